import importlib.util
import re
from pathlib import Path

import pytest
from pydantic import ValidationError

from devhub.service.runtime import get_runtime

_SCRIPT = Path(__file__).resolve().parent.parent / "scripts" / "bootstrap_admin.py"
_spec = importlib.util.spec_from_file_location("bootstrap_admin", _SCRIPT)
bootstrap_admin_module = importlib.util.module_from_spec(_spec)
_spec.loader.exec_module(bootstrap_admin_module)

PASSWORD = "Admin@Pass123"


def test_validate_admin_input_normalizes_email():
    email, name = bootstrap_admin_module.validate_admin_input(
        "  Admin@Example.COM ", PASSWORD, "Site Admin"
    )
    assert email == "admin@example.com"
    assert name == "Site Admin"


def test_validate_admin_input_rejects_weak_password():
    with pytest.raises(ValidationError):
        bootstrap_admin_module.validate_admin_input("admin@example.com", "weak", "Site Admin")


async def test_creates_admin():
    result = await bootstrap_admin_module.bootstrap_admin(
        "admin@example.com", PASSWORD, "Site Admin"
    )
    assert result["status"] == "created"
    user = get_runtime().store.get_user(result["user_id"])
    assert user.role == "admin"


async def test_promotes_existing_user_then_reports_already_admin():
    runtime = get_runtime()
    user = await runtime.sessions.register(
        email="dev@example.com", password=PASSWORD, name="Dev User"
    )
    result = await bootstrap_admin_module.bootstrap_admin("dev@example.com", PASSWORD)
    assert result == {"user_id": user.id, "email": "dev@example.com", "status": "promoted"}
    assert runtime.store.get_user(user.id).role == "admin"

    again = await bootstrap_admin_module.bootstrap_admin("dev@example.com", PASSWORD)
    assert again["status"] == "already_admin"


async def test_dry_run_changes_nothing():
    result = await bootstrap_admin_module.bootstrap_admin(
        "new@example.com", PASSWORD, dry_run=True
    )
    assert result["status"] == "dry_run"
    assert get_runtime().store.get_user_by_email("new@example.com") is None


def test_documented_example_password_is_valid():
    documented = re.search(r"--password '([^']+)'", bootstrap_admin_module.__doc__).group(1)
    email, _ = bootstrap_admin_module.validate_admin_input(
        "admin@example.com", documented, "Site Admin"
    )
    assert email == "admin@example.com"
