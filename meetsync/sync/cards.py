"""
Card Rendering

Maps proposals to Slack Block Kit payloads and owns the button payload
contract: every Accept / Skip / Feedback button carries the same encoded
ActionPayload ({session_id, queue_index, proposal}), validated on the way
back in.
"""

import json
from datetime import date
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from ..common.schemas import TBD, ActionPayload, Proposal, ProposalAction

ACCEPT_ACTION_ID = "accept_task"
SKIP_ACTION_ID = "skip_task"
FEEDBACK_ACTION_ID = "feedback_task"
FEEDBACK_CALLBACK_ID = "feedback_modal_submit"

# Slack caps button values at 2000 chars; text is shortened in the payload only.
PAYLOAD_NOTES_LIMIT = 500
PAYLOAD_FIELD_LIMIT = 150
BUTTON_VALUE_LIMIT = 2000
_PAYLOAD_TEXT_FIELDS = ("title", "owner", "status", "project", "linked_reference")

STATUS_OPTIONS = ("To do", "In progress", "Done")
PRIORITY_OPTIONS = ("High", "Medium", "Low")
FOCUS_OPTIONS = ("Yes", "No")

# (block_id, action_id, proposal field)
FORM_FIELDS = (
    ("title_block", "title", "title"),
    ("notes_block", "notes", "notes"),
    ("owner_block", "owner", "owner"),
    ("project_block", "project", "project"),
    ("priority_block", "priority", "priority"),
    ("status_block", "status", "status"),
    ("start_date_block", "start_date", "start_date"),
    ("due_date_block", "due_date", "due_date"),
    ("focus_block", "focus", "focus_this_week"),
    ("reference_block", "linked_reference", "linked_reference"),
)


class PayloadError(ValueError):
    """An inbound button value or form does not match the payload contract."""
    pass


# ============================================================================
# Payload codec
# ============================================================================

def encode_action_payload(payload: ActionPayload) -> str:
    """Serialize a payload for a button value."""
    data = payload.model_dump(mode="json")
    notes = data["proposal"].get("notes") or ""
    if len(notes) > PAYLOAD_NOTES_LIMIT:
        data["proposal"]["notes"] = notes[:PAYLOAD_NOTES_LIMIT] + "..."

    value = json.dumps(data, separators=(",", ":"), ensure_ascii=False)
    if len(value) > BUTTON_VALUE_LIMIT:
        data["proposal"]["notes"] = ""
        for key in _PAYLOAD_TEXT_FIELDS:
            text = data["proposal"].get(key) or ""
            if len(text) > PAYLOAD_FIELD_LIMIT:
                data["proposal"][key] = text[:PAYLOAD_FIELD_LIMIT] + "..."
        value = json.dumps(data, separators=(",", ":"), ensure_ascii=False)
    return value


def decode_action_payload(raw: Optional[str]) -> ActionPayload:
    """Parse and validate a button value (raises PayloadError, never crashes)."""
    if not raw:
        raise PayloadError("Empty action payload")
    try:
        data = json.loads(raw)
    except (TypeError, json.JSONDecodeError) as e:
        raise PayloadError(f"Action payload is not JSON: {e}") from e
    if not isinstance(data, dict):
        raise PayloadError("Action payload is not an object")
    try:
        return ActionPayload.model_validate(data)
    except ValidationError as e:
        raise PayloadError(f"Action payload failed validation: {e.error_count()} error(s)") from e


# ============================================================================
# Cards
# ============================================================================

def _or_dash(value: Optional[date]) -> str:
    return value.isoformat() if value else "—"


def _section(text: str) -> Dict[str, Any]:
    return {"type": "section", "text": {"type": "mrkdwn", "text": text}}


def _context(text: str) -> Dict[str, Any]:
    return {"type": "context", "elements": [{"type": "mrkdwn", "text": text}]}


def proposal_details(proposal: Proposal, position: int, total: int) -> str:
    """Human-readable body of a proposal card."""
    type_label = "Create new Task" if proposal.action == ProposalAction.CREATE else "Update existing Task"
    existing_line = ""
    if proposal.action == ProposalAction.UPDATE:
        existing_line = f"*Existing task:* <{proposal.external_url}|Open Notion Page>\n"
    version = f" (v{proposal.iteration})" if proposal.iteration > 1 else ""

    return (
        f"*Proposal {position} of {total}*{version}\n\n"
        f"*Project:* {proposal.project or 'Unassigned'}\n\n"
        f"*Proposal type:* {type_label}\n"
        f"*Task title:* {proposal.title}\n\n"
        f"{existing_line}"
        f"*Linked JTBD:* {proposal.linked_reference or TBD}\n\n"
        f"*Owner:* {proposal.owner}\n"
        f"*Status:* {proposal.status}\n"
        f"*Start Date:* {_or_dash(proposal.start_date)}\n"
        f"*Due Date:* {_or_dash(proposal.due_date)}\n\n"
        f"*Priority Level:* {proposal.priority.value}\n"
        f"*Source:* Virtual Meeting\n"
        f"*Focus This Week?:* {proposal.focus_this_week.value}\n\n"
        f"*Notes:*\n{proposal.notes}"
    )


def render_proposal_card(
    proposal: Proposal,
    session_id: str,
    queue_index: int,
    total: int,
    meeting_title: str = "",
) -> Dict[str, Any]:
    """Card for the proposal at queue_index, with Accept / Skip / Feedback."""
    value = encode_action_payload(
        ActionPayload(session_id=session_id, queue_index=queue_index, proposal=proposal)
    )
    accept_text = "✅ Accept & Create" if proposal.action == ProposalAction.CREATE else "✅ Accept & Update"
    header = f"📝 Sync Report: {meeting_title or 'Virtual Meeting'}"
    if proposal.iteration > 1:
        header = f"📝 Refined Proposal (v{proposal.iteration})"

    blocks: List[Dict[str, Any]] = [
        {"type": "header", "text": {"type": "plain_text", "text": header[:150], "emoji": True}},
        _context(f"_Ref: {session_id}_"),
        {"type": "divider"},
        _section(proposal_details(proposal, queue_index + 1, total)),
        {
            "type": "actions",
            "elements": [
                {
                    "type": "button",
                    "text": {"type": "plain_text", "text": accept_text},
                    "style": "primary",
                    "action_id": ACCEPT_ACTION_ID,
                    "value": value,
                },
                {
                    "type": "button",
                    "text": {"type": "plain_text", "text": "⏭️ Skip"},
                    "action_id": SKIP_ACTION_ID,
                    "value": value,
                },
                {
                    "type": "button",
                    "text": {"type": "plain_text", "text": "💬 Feedback"},
                    "action_id": FEEDBACK_ACTION_ID,
                    "value": value,
                },
            ],
        },
    ]
    return {"text": f"Proposal {queue_index + 1} of {total}: {proposal.title}", "blocks": blocks}


def render_outcome_card(outcome: str, proposal: Proposal, detail: str = "") -> Dict[str, Any]:
    """
    Replacement card for a resolved (or failed) proposal.

    outcome is one of "created", "updated", "failed", "skipped".
    """
    if outcome == "created":
        text = f"✅ *Created:* {proposal.title}\n_Focus: {proposal.focus_this_week.value}_"
    elif outcome == "updated":
        text = f"✅ *Updated:* {proposal.title} in Notion."
    elif outcome == "skipped":
        text = f"⏭️ *Skipped:* {proposal.title}"
    elif outcome == "failed":
        text = f"❌ *Failed to save:* {proposal.title}\n_{detail or 'Record store error'}_ — retry or skip."
    else:
        raise ValueError(f"Unknown outcome: {outcome}")

    return {"replace_original": True, "text": text, "blocks": [_section(text)]}


def render_retry_card(
    proposal: Proposal,
    session_id: str,
    queue_index: int,
    total: int,
    detail: str,
    meeting_title: str = "",
) -> Dict[str, Any]:
    """Failed-write card that keeps the action buttons so the human can retry or skip."""
    card = render_proposal_card(proposal, session_id, queue_index, total, meeting_title)
    failure = render_outcome_card("failed", proposal, detail)
    card["blocks"].insert(0, failure["blocks"][0])
    card["text"] = failure["text"]
    card["replace_original"] = True
    return card


def render_completion_notice(session_id: str, total: int, meeting_title: str = "") -> Dict[str, Any]:
    text = f"🏁 All {total} proposal(s) reviewed for *{meeting_title or 'Virtual Meeting'}*."
    return {"text": text, "blocks": [_section(text), _context(f"_Ref: {session_id}_")]}


def render_empty_notice(session_id: str, meeting_title: str = "") -> Dict[str, Any]:
    text = f"_No tasks identified in this transcript ({meeting_title or 'Virtual Meeting'})._"
    return {"text": text, "blocks": [_section(text), _context(f"_Ref: {session_id}_")]}


def render_not_found_notice(session_id: Optional[str] = None) -> Dict[str, Any]:
    text = "ℹ️ Nothing to act on: this review session has already finished or is no longer available."
    blocks = [_section(text)]
    if session_id:
        blocks.append(_context(f"_Ref: {session_id}_"))
    return {"replace_original": True, "text": text, "blocks": blocks}


def render_error_alert(message: str, trace_id: str, detail: str = "") -> Dict[str, Any]:
    """Operator alert for an ERROR logged while handling a session."""
    detail = detail or "N/A"
    text = f"🚨 *Server Error*\n*Message:* {message}\n*Trace ID:* `{trace_id}`\n*Error:* {detail}"
    blocks = [
        {"type": "header", "text": {"type": "plain_text", "text": "🚨 Critical Error Detected"}},
        {
            "type": "section",
            "fields": [
                {"type": "mrkdwn", "text": f"*Message:*\n{message}"},
                {"type": "mrkdwn", "text": f"*Trace ID:*\n`{trace_id}`"},
            ],
        },
        _section(f"*Technical Detail:*\n```{detail[:PAYLOAD_NOTES_LIMIT]}```"),
    ]
    return {"text": text, "blocks": blocks}


# ============================================================================
# Feedback form
# ============================================================================

def _text_input(block_id: str, action_id: str, label: str, value: str,
                multiline: bool = False, optional: bool = False) -> Dict[str, Any]:
    element: Dict[str, Any] = {"type": "plain_text_input", "action_id": action_id, "multiline": multiline}
    if value:
        element["initial_value"] = value
    return {
        "type": "input",
        "block_id": block_id,
        "optional": optional,
        "label": {"type": "plain_text", "text": label},
        "element": element,
    }


def _select(block_id: str, action_id: str, label: str, value: str, options) -> Dict[str, Any]:
    def option(v: str) -> Dict[str, Any]:
        return {"text": {"type": "plain_text", "text": v}, "value": v}

    element = {
        "type": "static_select",
        "action_id": action_id,
        "options": [option(v) for v in options],
    }
    if value in options:
        element["initial_option"] = option(value)
    return {
        "type": "input",
        "block_id": block_id,
        "label": {"type": "plain_text", "text": label},
        "element": element,
    }


def _datepicker(block_id: str, action_id: str, label: str, value: Optional[date]) -> Dict[str, Any]:
    element: Dict[str, Any] = {
        "type": "datepicker",
        "action_id": action_id,
        "placeholder": {"type": "plain_text", "text": "Select a date"},
    }
    if value:
        element["initial_date"] = value.isoformat()
    return {
        "type": "input",
        "block_id": block_id,
        "optional": True,
        "label": {"type": "plain_text", "text": label},
        "element": element,
    }


def render_feedback_modal(proposal: Proposal, form_id: str) -> Dict[str, Any]:
    """Editable form seeded with every field of the proposal."""
    status_options = STATUS_OPTIONS
    if proposal.status and proposal.status not in status_options:
        status_options = STATUS_OPTIONS + (proposal.status,)

    return {
        "type": "modal",
        "callback_id": FEEDBACK_CALLBACK_ID,
        "private_metadata": json.dumps({"form_id": form_id}),
        "title": {"type": "plain_text", "text": "Feedback Form"},
        "submit": {"type": "plain_text", "text": "Submit Feedback"},
        "close": {"type": "plain_text", "text": "Cancel"},
        "blocks": [
            _text_input("title_block", "title", "Task Title", proposal.title),
            _text_input("notes_block", "notes", "Notes / Context", proposal.notes, multiline=True, optional=True),
            {"type": "divider"},
            _section("*Task Details*"),
            _text_input("owner_block", "owner", "Owner", proposal.owner or "Unassigned"),
            _text_input("project_block", "project", "Project", proposal.project, optional=True),
            _select("priority_block", "priority", "Priority", proposal.priority.value, PRIORITY_OPTIONS),
            _select("status_block", "status", "Status", proposal.status, status_options),
            _datepicker("start_date_block", "start_date", "Start Date", proposal.start_date),
            _datepicker("due_date_block", "due_date", "Due Date", proposal.due_date),
            _select("focus_block", "focus", "Focus This Week?", proposal.focus_this_week.value, FOCUS_OPTIONS),
            _text_input("reference_block", "linked_reference", "Linked JTBD", proposal.linked_reference, optional=True),
        ],
    }


def form_id_from_metadata(private_metadata: Optional[str]) -> str:
    """Recover the one-time form id from a modal's hidden metadata."""
    try:
        data = json.loads(private_metadata or "")
    except json.JSONDecodeError as e:
        raise PayloadError(f"Form metadata is not JSON: {e}") from e
    form_id = data.get("form_id") if isinstance(data, dict) else None
    if not form_id or not isinstance(form_id, str):
        raise PayloadError("Form metadata has no form_id")
    return form_id


def parse_feedback_form(state_values: Dict[str, Any]) -> Dict[str, Any]:
    """
    Convert a modal's ``view.state.values`` into proposal field values.

    Blocks missing from the submission are left out (the field keeps its
    value). Cleared optional inputs map to the field's empty value.
    """
    values: Dict[str, Any] = {}
    for block_id, action_id, name in FORM_FIELDS:
        block = (state_values or {}).get(block_id)
        if block is None or action_id not in block:
            continue
        element = block[action_id] or {}
        kind = element.get("type")

        if kind == "static_select":
            selected = element.get("selected_option")
            if selected:
                values[name] = selected.get("value")
        elif kind == "datepicker":
            values[name] = element.get("selected_date") or None
        else:
            text = element.get("value")
            if name == "linked_reference":
                values[name] = (text or "").strip() or TBD
            elif name == "owner":
                values[name] = (text or "").strip() or "Unassigned"
            elif name == "title":
                if text and text.strip():
                    values[name] = text.strip()
            else:
                values[name] = text or ""
    return values
