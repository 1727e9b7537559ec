"""Employee records, authentication, and the session audit log.

These are the services the transaction engine relies on to learn who is at
the terminal: :func:`authenticate` resolves a role, and :func:`log_session`
records logins and logouts. Record updates return the sentinel codes in
:class:`~pos_system.constants.UpdateResult` instead of raising.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from . import data_manager, log
from .constants import AuthResult, EmployeeRole, UpdateResult
from .data_manager import Employee, FlatFileStore


_ROLE_RESULTS = {
    EmployeeRole.CASHIER: AuthResult.CASHIER,
    EmployeeRole.ADMIN: AuthResult.ADMIN,
}


def load_employees(path: Path) -> List[Employee]:
    """Read every employee record; a missing file yields an empty list."""

    employees = []
    try:
        for raw in FlatFileStore(path).scan():
            try:
                employees.append(data_manager.deserialize_employee(raw))
            except ValueError:
                log.warning("Skipping malformed employee line %r", raw)
    except OSError as exc:
        log.warning("Unable to read employee file '%s': %s", path, exc)
        return []
    return employees


def save_employees(path: Path, employees: List[Employee]) -> bool:
    try:
        FlatFileStore(path).replace(data_manager.serialize_employee(employee) for employee in employees)
    except OSError as exc:
        log.error("Unable to write employee file '%s': %s", path, exc)
        return False
    return True


def find_employee(path: Path, username: str) -> Optional[Employee]:
    for employee in load_employees(path):
        if employee.username == username:
            return employee
    return None


def authenticate(path: Path, username: str, password: str) -> AuthResult:
    """Check credentials and return the employee's role as a result code."""

    employee = find_employee(path, username)
    if employee is None or employee.password != password:
        log.warning("Failed login attempt for '%s'", username)
        return AuthResult.FAILURE
    return _ROLE_RESULTS[employee.role]


def role_for(result: AuthResult) -> Optional[EmployeeRole]:
    """Map an authentication result back to a role (``None`` on failure)."""

    for role, code in _ROLE_RESULTS.items():
        if code == result:
            return role
    return None


def _parse_role(value: str) -> Optional[EmployeeRole]:
    try:
        return EmployeeRole(value.strip().capitalize())
    except ValueError:
        return None


def add_employee(path: Path, username: str, name: str, password: str, role: str) -> bool:
    """Append a new employee; rejects unknown roles and taken usernames."""

    parsed_role = _parse_role(role)
    if parsed_role is None:
        log.warning("Unknown employee role %r", role)
        return False
    if not username.strip() or not name.strip() or not password.strip() or " " in password:
        log.warning("Employee fields must be non-blank and passwords may not contain spaces")
        return False
    if find_employee(path, username) is not None:
        log.warning("Employee '%s' already exists", username)
        return False

    record = Employee(username=username, name=name.strip(), password=password, role=parsed_role)
    try:
        FlatFileStore(path).append([data_manager.serialize_employee(record)])
    except OSError as exc:
        log.error("Unable to add employee '%s': %s", username, exc)
        return False
    log.info("Added %s '%s'", parsed_role.value, username)
    return True


def delete_employee(path: Path, username: str) -> bool:
    employees = load_employees(path)
    remaining = [employee for employee in employees if employee.username != username]
    if len(remaining) == len(employees):
        return False
    return save_employees(path, remaining)


def update_employee(
    path: Path,
    username: str,
    *,
    password: str = "",
    role: str = "",
    name: str = "",
) -> UpdateResult:
    """Update an employee's password, role, or name.

    Blank fields leave the stored value unchanged.

    Returns:
        UpdateResult: ``UPDATED`` on success, ``NOT_FOUND`` for an unknown
            username, ``INVALID_FIELD`` for an unknown role or a password
            containing spaces, ``WRITE_FAILED`` when the employee file could
            not be rewritten.
    """

    employees = load_employees(path)
    for index, employee in enumerate(employees):
        if employee.username != username:
            continue

        changes = {}
        if role.strip():
            parsed_role = _parse_role(role)
            if parsed_role is None:
                return UpdateResult.INVALID_FIELD
            changes["role"] = parsed_role
        if password.strip():
            if " " in password.strip():
                return UpdateResult.INVALID_FIELD
            changes["password"] = password.strip()
        if name.strip():
            changes["name"] = name.strip()

        employees[index] = replace(employee, **changes)
        if not save_employees(path, employees):
            log.error("Update of employee '%s' was not saved", username)
            return UpdateResult.WRITE_FAILED
        log.info("Updated employee '%s'", username)
        return UpdateResult.UPDATED

    return UpdateResult.NOT_FOUND


def log_session(path: Path, employee: Employee, *, logged_in: bool, when: Optional[datetime] = None) -> bool:
    """Append a login or logout line to the session log."""

    when = when or datetime.now()
    action = "logs into" if logged_in else "logs out of"
    line = (
        f"{employee.name} ({employee.username} {employee.role.value}) {action} POS System. "
        f"Time: {when:%Y-%m-%d %H:%M:%S}"
    )
    try:
        FlatFileStore(path).append([line])
    except OSError as exc:
        log.error("Unable to write session log '%s': %s", path, exc)
        return False
    return True
