from app.tasks.payouts import payout_payees, schedule_payouts, update_payout_status

__all__ = [
    "payout_payees",
    "schedule_payouts",
    "update_payout_status",
]
