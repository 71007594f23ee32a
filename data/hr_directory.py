"""
Mock HR directory for development and testing.
In production, identities live with the identity provider and balances are
provisioned in the hosted database by HR.
"""

from datetime import date

# Leave types offered to employees, with yearly allotments.
LEAVE_TYPE_CATALOG = {
    "annual": {"display_name": "Annual Leave", "default_days": 20, "unlimited": False},
    "sick": {"display_name": "Sick Leave", "default_days": 10, "unlimited": False},
    "personal": {"display_name": "Personal Leave", "default_days": 5, "unlimited": False},
    "bereavement": {"display_name": "Bereavement Leave", "default_days": 5, "unlimited": False},
    "unpaid": {"display_name": "Unpaid Leave", "default_days": 0, "unlimited": True},
}

# Demo accounts. Passwords are hashed by the identity provider at startup.
MOCK_PROFILES = {
    "ADM-001": {
        "id": "ADM-001",
        "name": "Alicia Moreno",
        "email": "admin@company.com",
        "password": "admin-password",
        "department": "Human Resources",
        "role": "admin",
    },
    "EMP-001": {
        "id": "EMP-001",
        "name": "John Doe",
        "email": "john.doe@company.com",
        "password": "employee-password",
        "department": "Engineering",
        "role": "employee",
    },
    "EMP-002": {
        "id": "EMP-002",
        "name": "Jane Smith",
        "email": "jane.smith@company.com",
        "password": "employee-password",
        "department": "Marketing",
        "role": "employee",
    },
}

# Static dashboard notifications; there is no delivery system behind these.
MOCK_NOTIFICATIONS = {
    "admin": [
        {"title": "New Leave Request", "time": "10 minutes ago", "status": "new"},
        {"title": "Salary Report Generated", "time": "2 hours ago", "status": None},
        {"title": "Task Status Updated", "time": "5 hours ago", "status": None},
        {"title": "New Complaint Filed", "time": "Yesterday at 4:30 PM", "status": "new"},
    ],
    "employee": [
        {"title": "Leave Request Approved", "time": "1 hour ago", "status": "new"},
        {"title": "Salary Credited", "time": "Yesterday", "status": None},
        {"title": "New Task Assigned", "time": "2 days ago", "status": None},
    ],
}


def get_leave_type_info(leave_type: str):
    """Get catalog entry for a leave type."""
    return LEAVE_TYPE_CATALOG.get(leave_type)


def get_notifications(role: str) -> list[dict]:
    """Get the static notification list shown on a role's dashboard."""
    return [dict(n) for n in MOCK_NOTIFICATIONS.get(role, [])]


def build_balance_rows(years=None) -> list[dict]:
    """
    Build one balance row per employee, leave type and year.

    Defaults to the current and the following calendar year so that leave
    booked across New Year has a row to reconcile against.
    """
    if years is None:
        this_year = date.today().year
        years = (this_year, this_year + 1)

    rows = []
    for profile in MOCK_PROFILES.values():
        if profile["role"] != "employee":
            continue
        for year in years:
            for leave_type, info in LEAVE_TYPE_CATALOG.items():
                rows.append(
                    {
                        "requester_id": profile["id"],
                        "leave_type": leave_type,
                        "year": year,
                        "total_days": info["default_days"],
                        "used_days": 0,
                        "unlimited": info["unlimited"],
                    }
                )
    return rows
