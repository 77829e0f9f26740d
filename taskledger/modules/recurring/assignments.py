"""Team member mapping rules: who may act on which clients of a recurring task."""

import logging

from taskledger.core.config import settings
from taskledger.core.errors import InvalidArgumentError
from taskledger.domain.recurring_task import RecurringTask, TeamMemberMapping, dedupe_ids


logger = logging.getLogger(__name__)


def is_privileged_role(role: str | None) -> bool:
    """Whether a role sees every client of a team-scoped task."""
    return bool(role) and role.lower() in {r.lower() for r in settings.privileged_roles}


def resolve_visible_clients(task: RecurringTask, viewer_id: str | None, viewer_is_privileged: bool) -> set[str]:
    """Return the clients ``viewer_id`` may act on for ``task``.

    Resolution order:
    1. A mapping entry for the viewer wins: exactly that entry's clients.
    2. No mappings and no team: the task is unscoped, every contact is visible.
    3. A team-scoped task seen by a privileged role: every contact.
    4. Anything else (unmapped, non-privileged): nothing.
    """
    mappings = task.team_member_mappings
    if mappings and viewer_id:
        for mapping in mappings:
            if mapping.user_id == viewer_id:
                return set(mapping.client_ids)

    if not mappings and not task.team_id:
        return set(task.contact_ids)

    if task.team_id and viewer_is_privileged:
        return set(task.contact_ids)

    logger.debug(
        "Viewer has no visible clients",
        extra={"task_id": task.id, "viewer_id": viewer_id, "team_id": task.team_id},
    )
    return set()


def ordered_visible_clients(task: RecurringTask, viewer_id: str | None, viewer_is_privileged: bool) -> list[str]:
    """Visible clients in the order they appear on the task."""
    visible = resolve_visible_clients(task, viewer_id, viewer_is_privileged)
    ordered = [cid for cid in task.contact_ids if cid in visible]
    # Mapped clients that are no longer contacts still belong to the viewer
    ordered.extend(sorted(visible.difference(ordered)))
    return ordered


def validate_mapping(mappings: list[TeamMemberMapping], contact_ids: list[str]) -> None:
    """Ensure every mapped client is one of the task's contacts.

    Overlap between members is allowed and left as is.

    Raises:
        InvalidArgumentError: Naming the first client that is not in ``contact_ids``
    """
    allowed = set(contact_ids)
    for mapping in mappings:
        for client_id in mapping.client_ids:
            if client_id not in allowed:
                msg = (
                    f"Client {client_id} is assigned to {mapping.user_name or mapping.user_id} "
                    "but is not one of the task's clients"
                )
                raise InvalidArgumentError(msg, field="team_member_mappings")


def normalize_mappings(mappings: list[TeamMemberMapping]) -> list[TeamMemberMapping]:
    """Merge repeated entries for the same member, keeping first-seen order of members and clients."""
    merged: dict[str, TeamMemberMapping] = {}
    for mapping in mappings:
        existing = merged.get(mapping.user_id)
        if existing is None:
            merged[mapping.user_id] = mapping.model_copy(update={"client_ids": list(mapping.client_ids)})
            continue
        existing.client_ids = dedupe_ids([*existing.client_ids, *mapping.client_ids])
        if not existing.user_name and mapping.user_name:
            existing.user_name = mapping.user_name
    return list(merged.values())


def find_overlapping_clients(mappings: list[TeamMemberMapping]) -> dict[str, list[str]]:
    """Clients assigned to more than one member, with the members that hold them."""
    holders: dict[str, list[str]] = {}
    for mapping in mappings:
        for client_id in mapping.client_ids:
            holders.setdefault(client_id, []).append(mapping.user_id)
    return {client_id: users for client_id, users in holders.items() if len(users) > 1}


def owner_of(task: RecurringTask, client_id: str) -> TeamMemberMapping | None:
    """First team member mapped to ``client_id``, if any."""
    for mapping in task.team_member_mappings:
        if client_id in mapping.client_ids:
            return mapping
    return None
