"""Permission scope table and resource grouping.

Identifiers follow ``<Resource>.<Permission>`` (e.g. ``SPO.Sites.FullControl.All``)
and map to the application role ids published by each resource application.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Iterable, Optional

from .exceptions import InvalidScopeError

GRAPH_APP_ID = "00000003-0000-0000-c000-000000000000"
SHAREPOINT_APP_ID = "00000003-0000-0ff1-ce00-000000000000"
O365_MANAGEMENT_APP_ID = "c5393580-f805-4401-95e8-94b7a6ef2fc2"


@dataclass(frozen=True)
class PermissionScope:
    identifier: str
    resource_app_id: str
    id: str
    type: str = "Role"

    def to_resource_access(self) -> dict[str, str]:
        return {"id": self.id, "type": self.type}


@dataclass
class ResourceAccessGroup:
    """Permissions requested against a single resource application."""
    resource_app_id: str
    scopes: list[PermissionScope] = field(default_factory=list)

    @property
    def permission_ids(self) -> list[str]:
        return [scope.id for scope in self.scopes]

    def to_payload(self) -> dict:
        return {
            "resourceAppId": self.resource_app_id,
            "resourceAccess": [scope.to_resource_access() for scope in self.scopes],
        }


PERMISSION_SCOPES: tuple[PermissionScope, ...] = (
    # Microsoft Graph
    PermissionScope("MSGraph.Group.Read.All", GRAPH_APP_ID, "5b567255-7703-4780-807c-7be8301ae99b"),
    PermissionScope("MSGraph.Group.ReadWrite.All", GRAPH_APP_ID, "62a82d76-70ea-41e2-9197-370581804d09"),
    PermissionScope("MSGraph.User.Read.All", GRAPH_APP_ID, "df021288-bdef-4463-88db-98f22de89214"),
    PermissionScope("MSGraph.User.ReadWrite.All", GRAPH_APP_ID, "741f803b-c850-494e-b5df-cde7c675a1ca"),
    PermissionScope("MSGraph.Sites.FullControl.All", GRAPH_APP_ID, "a82116e5-55eb-4c41-a434-62fe8a61c773"),
    PermissionScope("MSGraph.Sites.Manage.All", GRAPH_APP_ID, "0c0bf378-bf22-4481-8f81-9e89a9b4960a"),
    PermissionScope("MSGraph.Sites.Read.All", GRAPH_APP_ID, "332a536c-c7ef-4017-ab91-336970924f0d"),
    PermissionScope("MSGraph.Sites.ReadWrite.All", GRAPH_APP_ID, "9492366f-7969-46a4-8d15-ed1a20078fff"),
    PermissionScope("MSGraph.Sites.Selected", GRAPH_APP_ID, "883ea226-0bf2-4a8f-9f9d-92c9162a727d"),
    PermissionScope("MSGraph.Directory.Read.All", GRAPH_APP_ID, "7ab1d382-f21e-4acd-a863-ba3e13f7da61"),
    PermissionScope("MSGraph.Directory.ReadWrite.All", GRAPH_APP_ID, "19dbc75e-c2e2-444c-a770-ec69d8559fc7"),
    PermissionScope("MSGraph.Application.ReadWrite.All", GRAPH_APP_ID, "1bfefb4e-e0b5-418b-a88f-73c46d2cc8e9"),
    PermissionScope("MSGraph.Mail.Send", GRAPH_APP_ID, "b633e1c5-b582-4048-a93e-9f11b44c7e96"),
    PermissionScope("MSGraph.Team.ReadBasic.All", GRAPH_APP_ID, "2280dda6-0bfd-44ee-a2f4-cb867cfc4c1e"),
    # SharePoint
    PermissionScope("SPO.Sites.FullControl.All", SHAREPOINT_APP_ID, "678536fe-1083-478a-9c59-b99265e6b0d3"),
    PermissionScope("SPO.Sites.Manage.All", SHAREPOINT_APP_ID, "9bff6588-13f2-4c48-bbf2-ddab62256b36"),
    PermissionScope("SPO.Sites.Read.All", SHAREPOINT_APP_ID, "d13f72ca-a275-4b96-b789-48ebcc4da984"),
    PermissionScope("SPO.Sites.ReadWrite.All", SHAREPOINT_APP_ID, "fbcd29d2-fcca-4405-aded-518d457caae4"),
    PermissionScope("SPO.TermStore.Read.All", SHAREPOINT_APP_ID, "2a8d57a5-4090-4a41-bf1c-3c621d2ccad3"),
    PermissionScope("SPO.TermStore.ReadWrite.All", SHAREPOINT_APP_ID, "c8e3537c-ec53-43b9-bed3-b2bd3617ae97"),
    PermissionScope("SPO.User.Read.All", SHAREPOINT_APP_ID, "df021288-bdef-4463-88db-98f22de89214"),
    PermissionScope("SPO.User.ReadWrite.All", SHAREPOINT_APP_ID, "741f803b-c850-494e-b5df-cde7c675a1ca"),
    # Office 365 Management APIs
    PermissionScope("O365Management.ActivityFeed.Read", O365_MANAGEMENT_APP_ID, "594c1fb6-4f81-4475-ae41-0c394909246c"),
    PermissionScope("O365Management.ActivityFeed.ReadDlp", O365_MANAGEMENT_APP_ID, "4807a72c-ad38-4250-94c9-4eabfe26cd55"),
    PermissionScope("O365Management.ServiceHealth.Read", O365_MANAGEMENT_APP_ID, "e2cea78f-e743-4d8f-a16a-75b629a038ae"),
)

_SCOPES_BY_IDENTIFIER: dict[str, PermissionScope] = {scope.identifier: scope for scope in PERMISSION_SCOPES}

# Allowed values for the --scopes option, fixed at import time
SCOPE_IDENTIFIERS: frozenset[str] = frozenset(_SCOPES_BY_IDENTIFIER)

DEFAULT_SCOPE_IDENTIFIERS: tuple[str, ...] = (
    "SPO.Sites.FullControl.All",
    "MSGraph.Group.ReadWrite.All",
    "SPO.User.Read.All",
    "MSGraph.User.Read.All",
)


def get_scope(identifier: str) -> PermissionScope:
    """Look up a scope by identifier.

    Raises:
        InvalidScopeError: If the identifier is not in the table
    """
    try:
        return _SCOPES_BY_IDENTIFIER[identifier]
    except KeyError:
        raise InvalidScopeError(
            f"Unknown scope '{identifier}'. Valid values: {', '.join(sorted(SCOPE_IDENTIFIERS))}",
            parameter="Scopes",
        ) from None


def resolve_scopes(identifiers: Optional[Iterable[str]] = None) -> list[PermissionScope]:
    """Resolve identifiers to scopes, falling back to the default set when none are given.

    Every identifier is validated before any is returned; one unknown
    identifier fails the whole call.
    """
    requested = list(identifiers) if identifiers else []
    if not requested:
        requested = list(DEFAULT_SCOPE_IDENTIFIERS)

    unknown = [identifier for identifier in requested if identifier not in SCOPE_IDENTIFIERS]
    if unknown:
        raise InvalidScopeError(
            f"Unknown scope(s): {', '.join(unknown)}. Valid values: {', '.join(sorted(SCOPE_IDENTIFIERS))}",
            parameter="Scopes",
        )
    return [get_scope(identifier) for identifier in requested]


def group_by_resource(scopes: Iterable[PermissionScope]) -> list[ResourceAccessGroup]:
    """Group scopes by resource application, in first-seen order."""
    groups: dict[str, ResourceAccessGroup] = {}
    for scope in scopes:
        group = groups.get(scope.resource_app_id)
        if group is None:
            group = ResourceAccessGroup(scope.resource_app_id)
            groups[scope.resource_app_id] = group
        group.scopes.append(scope)
    return list(groups.values())


class ScopeResolver:
    """Resolve and group permission scopes for a registration payload."""

    def resolve(self, identifiers: Optional[Iterable[str]] = None) -> list[ResourceAccessGroup]:
        return group_by_resource(resolve_scopes(identifiers))
