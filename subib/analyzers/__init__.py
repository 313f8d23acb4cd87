from .eligibility import Payment, Registration, evaluate_registration, summarize_eligibility, weekly_bonus
from .commissions import commission_history, country_breakdown
from .journal import build_daily_journal, compute_monthly_totals, fetch_month_snapshots, load_journal, month_bounds
from .snapshot_diff import compare_snapshots
