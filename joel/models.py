"""Core data model: gazette records, users, follows and notification tasks."""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Tuple


class MessageApp(str, Enum):
    """Messaging platforms a user can be reached on."""

    TELEGRAM = "Telegram"
    WHATSAPP = "WhatsApp"
    SIGNAL = "Signal"
    MATRIX = "Matrix"


class UserStatus(str, Enum):
    """Delivery status of a user."""

    ACTIVE = "active"
    BLOCKED = "blocked"


class NotificationType(str, Enum):
    """Follow categories, in the order they are evaluated each cycle."""

    PEOPLE = "people"
    NAME = "name"
    FUNCTION = "function"
    ORGANISATION = "organisation"


@dataclass(frozen=True)
class OrganisationRef:
    """Organisation mentioned by a gazette record."""

    name: str
    wikidata_id: Optional[str] = None


@dataclass(frozen=True)
class GazetteRecord:
    """One publication item of the Journal Officiel about a person."""

    surname: str
    given_name: str
    source_date: date
    source_id: str
    source_name: str = "JORF"
    order_type: Optional[str] = None
    sex: Optional[str] = None
    organisations: Tuple[OrganisationRef, ...] = ()
    # Function fields present on the record, e.g. {"ministre": "Ministère de la Culture"}
    functions: Dict[str, str] = field(default_factory=dict, compare=False)

    @property
    def display_name(self) -> str:
        return f"{self.given_name} {self.surname}".strip()

    @property
    def published_at(self) -> datetime:
        """Publication date as a UTC timestamp, comparable to watermarks."""
        return datetime(
            self.source_date.year,
            self.source_date.month,
            self.source_date.day,
            tzinfo=timezone.utc,
        )

    @property
    def identity(self) -> Tuple[str, str, str, str]:
        """Key used to drop duplicate records of the same publication item."""
        return (
            self.source_id,
            self.surname.casefold(),
            self.given_name.casefold(),
            self.order_type or "",
        )


@dataclass
class Person:
    """Canonical person a user can follow."""

    id: int
    surname: str
    given_name: str

    @property
    def display_name(self) -> str:
        return f"{self.given_name} {self.surname}".strip()


@dataclass
class FollowedPerson:
    person_id: int
    last_update: datetime


@dataclass
class FollowedFunction:
    function_tag: str
    last_update: datetime


@dataclass
class FollowedOrganisation:
    organisation_id: str
    last_update: datetime


@dataclass
class User:
    """A subscriber reachable on one message app."""

    id: int
    message_app: MessageApp
    chat_id: str
    language_code: str = "fr"
    status: UserStatus = UserStatus.ACTIVE
    schema_version: int = 4
    last_engagement_at: Optional[datetime] = None
    waiting_reengagement: bool = False
    last_message_received_at: Optional[datetime] = None
    followed_people: List[FollowedPerson] = field(default_factory=list)
    followed_functions: List[FollowedFunction] = field(default_factory=list)
    followed_organisations: List[FollowedOrganisation] = field(default_factory=list)
    followed_names: List[str] = field(default_factory=list)

    @property
    def is_blocked(self) -> bool:
        return self.status == UserStatus.BLOCKED


@dataclass
class PendingNotification:
    """Record references held back while waiting for a user to re-engage."""

    id: int
    user_id: int
    notification_type: NotificationType
    source_ids: Dict[str, int]
    item_count: int
    inserted_at: datetime


@dataclass
class NameMatch:
    """A followed free-text name resolved to a person through new records."""

    followed_name: str
    person: Person
    records: List[GazetteRecord]
    # The user already follows the person: the name is retired, nothing is shown
    already_followed: bool = False


@dataclass
class UserMatches:
    """Every new record matched to one user during a cycle, per category."""

    user: User
    people: Dict[int, List[GazetteRecord]] = field(default_factory=dict)
    names: List[NameMatch] = field(default_factory=list)
    functions: Dict[str, List[GazetteRecord]] = field(default_factory=dict)
    organisations: Dict[str, List[GazetteRecord]] = field(default_factory=dict)
    organisation_names: Dict[str, str] = field(default_factory=dict)

    @property
    def new_names(self) -> List[NameMatch]:
        return [match for match in self.names if not match.already_followed]

    def is_empty(self) -> bool:
        return not (self.people or self.new_names or self.functions or self.organisations)

    def records_for(self, notification_type: NotificationType) -> List[GazetteRecord]:
        """All matched records of one category, duplicates included."""
        if notification_type == NotificationType.PEOPLE:
            groups = list(self.people.values())
        elif notification_type == NotificationType.NAME:
            groups = [match.records for match in self.new_names]
        elif notification_type == NotificationType.FUNCTION:
            groups = list(self.functions.values())
        else:
            groups = list(self.organisations.values())
        return [record for group in groups for record in group]

    def categories(self) -> List[NotificationType]:
        """Categories with at least one matched record, in evaluation order."""
        return [
            notification_type
            for notification_type in NotificationType
            if self.records_for(notification_type)
        ]

    @property
    def record_count(self) -> int:
        return sum(len(self.records_for(category)) for category in NotificationType)


@dataclass
class NotificationTask:
    """Unit of work handed to the dispatcher: one digest for one user."""

    user: User
    matches: UserMatches
    records_by_reference: Dict[str, List[GazetteRecord]]
    record_count: int

    @property
    def user_id(self) -> int:
        return self.user.id

    @property
    def chat_id(self) -> str:
        return self.user.chat_id

    @property
    def message_app(self) -> MessageApp:
        return self.user.message_app
