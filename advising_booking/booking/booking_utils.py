# Utility functions for booking functionality
import re
import secrets
import string
from datetime import date, time
from typing import Dict, List, Mapping, Optional

from email_validator import EmailNotValidError, validate_email

from .error_utils import BlockedRangeValidationError, InvalidDraftError
from .models import BlockedRange, BookingDraft, BookingPolicy

SESSION_MODES = ("in-person", "online")
SESSION_TYPES = ("individual", "group")
OTHER_REASON = "Other"

MAX_NAME_LENGTH = 100
MAX_COMMENTS_LENGTH = 1000
REFERENCE_CODE_ALPHABET = string.ascii_uppercase + string.digits

NAME_PATTERN = re.compile(r"^[A-Za-z\s]+$")


def generate_reference_code() -> str:
    """
    Short human friendly code a student uses to track the appointment, e.g. REF-7KQ2M9XA.
    """
    return "REF-" + "".join(secrets.choice(REFERENCE_CODE_ALPHABET) for _ in range(8))


def parse_booking_date(raw: Optional[str]) -> date:
    """
    Parses a YYYY-MM-DD calendar date. Raises ValueError on anything else, including full timestamps and numbers.
    """
    if raw is None or raw == "":
        raise ValueError("A date is required (YYYY-MM-DD).")
    if not isinstance(raw, str):
        raise ValueError(f"Invalid date: {raw!r}. Expected YYYY-MM-DD.")
    try:
        return date.fromisoformat(raw.strip())
    except ValueError as e:
        raise ValueError(f"Invalid date: {raw!r}. Expected YYYY-MM-DD.") from e


def parse_clock_time(raw: Optional[str]) -> time:
    if raw is None or raw == "":
        raise ValueError("A time is required (HH:MM).")
    if not isinstance(raw, str):
        raise ValueError(f"Invalid time: {raw!r}. Expected HH:MM.")
    try:
        return time.fromisoformat(raw.strip())
    except ValueError as e:
        raise ValueError(f"Invalid time: {raw!r}. Expected HH:MM.") from e


def _text(value) -> Optional[str]:
    """
    Stripped text for a str, "" for a missing value, None when the value isn't text at all.
    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    return None


def normalize_email(email: str, *, domain: Optional[str] = None) -> str:
    """
    Validates the syntax of an address with email_validator and returns the normalized form.
    Deliverability (DNS) checks are skipped since this runs inside a request.
    """
    if not isinstance(email, str):
        raise ValueError(f"Invalid email {email!r}: an email address must be text.")
    email = email.strip()
    try:
        valid = validate_email(email, check_deliverability=False)
    except EmailNotValidError as e:
        raise ValueError(f"Invalid email {email!r}: {e}") from e
    normalized = valid.normalized
    if domain and not normalized.lower().endswith("@" + domain.lower()):
        raise ValueError(f"Email {email!r} must end with @{domain}.")
    return normalized


def _clean_members(raw_members, policy: BookingPolicy, errors: Dict[str, str]) -> List[Dict[str, str]]:
    members: List[Dict[str, str]] = []
    # The booking student is part of the group
    max_members = policy.max_group_size - 1
    if not isinstance(raw_members, (list, tuple)):
        errors["group_members"] = "Group members must be a list."
    elif not raw_members:
        errors["group_members"] = "Please add details for at least one student."
    elif len(raw_members) > max_members:
        errors["group_members"] = f"A group session allows at most {policy.max_group_size} students."
    else:
        for index, member in enumerate(raw_members):
            if not isinstance(member, Mapping):
                errors["group_members"] = f"Student {index + 1} details must be an object."
                break
            values = {key: _text(member.get(key)) for key in ("name", "surname", "email")}
            if any(value is None for value in values.values()):
                errors["group_members"] = f"Student {index + 1} name, surname and email must be text."
                break
            if not all(values.values()):
                errors["group_members"] = f"Student {index + 1} needs a name, surname and email."
                break
            try:
                values["email"] = normalize_email(values["email"], domain=policy.member_email_domain)
            except ValueError as e:
                errors["group_members"] = str(e)
                break
            members.append(values)
    return members


def validate_draft(draft: BookingDraft, policy: BookingPolicy) -> BookingDraft:
    """
    Checks a booking draft against the policy limits.

    Collects every problem into a single InvalidDraftError so the form can show them together.
    A field holding something other than text is reported like any other bad field.
    Returns the draft with whitespace trimmed and emails normalized.
    """
    errors: Dict[str, str] = {}

    student_id = _text(draft.student_id)
    if student_id is None:
        errors["student_id"] = "Student id must be text."
    elif not student_id:
        errors["student_id"] = "Student id is required."

    name = _text(draft.student_name)
    if name is None:
        errors["student_name"] = "Full name must be text."
    elif not name:
        errors["student_name"] = "Full name is required."
    elif len(name) > MAX_NAME_LENGTH or not NAME_PATTERN.fullmatch(name):
        errors["student_name"] = "Full name cannot contain numbers or symbols."

    student_email = _text(draft.student_email)
    if student_email is None:
        errors["student_email"] = "Email must be text."
    elif student_email:
        try:
            student_email = normalize_email(student_email)
        except ValueError as e:
            errors["student_email"] = str(e)

    reasons: List[str] = []
    raw_reasons = [_text(r) for r in draft.reasons] if isinstance(draft.reasons, (list, tuple)) else None
    if raw_reasons is None or any(r is None for r in raw_reasons):
        errors["reasons"] = "Reasons must be a list of text."
    else:
        reasons = [r for r in raw_reasons if r]
        if not reasons:
            errors["reasons"] = "Please select at least one reason."
        elif len(reasons) > policy.max_reasons:
            errors["reasons"] = f"Please select at most {policy.max_reasons} reasons."
        elif len(set(reasons)) != len(reasons):
            errors["reasons"] = "Reasons must not repeat."

    other_reason = _text(draft.other_reason)
    if other_reason is None:
        errors["other_reason"] = "Other reason must be text."
    elif OTHER_REASON in reasons and not other_reason:
        errors["other_reason"] = "Please specify your reason."

    if not isinstance(draft.mode, str) or draft.mode not in SESSION_MODES:
        errors["mode"] = f"Mode must be one of: {', '.join(SESSION_MODES)}."

    members: List[Dict[str, str]] = []
    if not isinstance(draft.session_type, str) or draft.session_type not in SESSION_TYPES:
        errors["session_type"] = f"Session type must be one of: {', '.join(SESSION_TYPES)}."
    elif draft.session_type == "group":
        members = _clean_members(draft.group_members, policy, errors)

    comments = _text(draft.comments)
    if comments is None:
        errors["comments"] = "Comments must be text."
    elif len(comments) > MAX_COMMENTS_LENGTH:
        errors["comments"] = f"Comments are too long. Max {MAX_COMMENTS_LENGTH} characters."

    if errors:
        raise InvalidDraftError(errors)

    return BookingDraft(
        student_id=student_id,
        student_name=name,
        reasons=reasons,
        mode=draft.mode,
        session_type=draft.session_type,
        student_email=student_email or None,
        other_reason=other_reason or None,
        group_members=members,
        comments=comments,
    )


DRAFT_TEXT_FIELDS = ("student_id", "student_name", "mode", "session_type", "student_email", "other_reason", "comments")


def draft_from_payload(payload: Mapping) -> BookingDraft:
    """
    Builds a draft from a JSON request body. Shape problems, including numbers or lists where text belongs,
    are reported as InvalidDraftError.
    """
    if not isinstance(payload, Mapping):
        raise InvalidDraftError({"body": "Expected a JSON object."})

    errors: Dict[str, str] = {}
    for key in DRAFT_TEXT_FIELDS:
        if _text(payload.get(key)) is None:
            errors[key] = "Must be text."

    reasons = payload.get("reasons", [])
    if isinstance(reasons, str):
        reasons = [reasons]
    if not isinstance(reasons, list) or not all(isinstance(r, str) for r in reasons):
        errors["reasons"] = "Reasons must be a list of text."

    members = payload.get("group_members") or []
    if not isinstance(members, list) or not all(isinstance(m, Mapping) for m in members):
        errors["group_members"] = "Group members must be a list of objects."
    elif any(_text(m.get(key)) is None for m in members for key in ("name", "surname", "email")):
        errors["group_members"] = "Group member name, surname and email must be text."

    if errors:
        raise InvalidDraftError(errors)

    return BookingDraft(
        student_id=payload.get("student_id") or "",
        student_name=payload.get("student_name") or "",
        reasons=list(reasons),
        mode=payload.get("mode") or "",
        session_type=payload.get("session_type") or "individual",
        student_email=payload.get("student_email") or None,
        other_reason=payload.get("other_reason") or None,
        group_members=[dict(m) for m in members],
        comments=payload.get("comments") or "",
    )


def validate_blocked_range(blocked_range: BlockedRange) -> BlockedRange:
    if blocked_range.start_time >= blocked_range.end_time:
        raise BlockedRangeValidationError("End time must be after start time.")
    reason = _text(blocked_range.reason)
    details = _text(blocked_range.reason_details)
    if reason is None or details is None:
        raise BlockedRangeValidationError("Reason and reason details must be text.")
    if not reason:
        raise BlockedRangeValidationError("A reason is required to block a time slot.")
    if reason == OTHER_REASON and not details:
        raise BlockedRangeValidationError("Please specify a reason for 'Other'.")
    return blocked_range


def blocked_range_from_payload(advisor_id: str, payload: Mapping) -> BlockedRange:
    if not isinstance(payload, Mapping):
        raise BlockedRangeValidationError("Expected a JSON object.")
    try:
        blocked_range = BlockedRange(
            advisor_id=advisor_id,
            blocked_date=parse_booking_date(payload.get("date")),
            start_time=parse_clock_time(payload.get("start_time")),
            end_time=parse_clock_time(payload.get("end_time")),
            reason=payload.get("reason") or "",
            reason_details=payload.get("reason_details") or None,
        )
    except ValueError as e:
        raise BlockedRangeValidationError(str(e)) from e
    return validate_blocked_range(blocked_range)
