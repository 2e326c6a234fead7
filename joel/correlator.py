"""Matching of freshly fetched gazette records against user follow lists."""

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .formatting import dedupe_records
from .function_tags import FunctionTag, build_function_tag_map
from .models import (
    GazetteRecord,
    MessageApp,
    NameMatch,
    NotificationTask,
    User,
    UserMatches,
    UserStatus,
)
from .repository import UserRepository
from .utils import clean_people_name, person_name_key

logger = logging.getLogger(__name__)


class RecordCorrelator:
    """Finds, per user and per follow category, the records that are new.

    A record is new for a follow when its publication date is strictly after
    the follow's last_update watermark. Followed names have no watermark: a
    match is reported as a NameMatch and only promoted to a person follow once
    the digest carrying it is delivered.
    """

    def __init__(self, repository: UserRepository):
        self.repository = repository

    async def correlate(
        self,
        records: Sequence[GazetteRecord],
        message_apps: Iterable[MessageApp],
        user_ids: Optional[Iterable[int]] = None,
    ) -> List[UserMatches]:
        """Return one UserMatches per user with new records or matched names.

        Nothing is written to the store apart from lazily created people.
        """
        records = list(records)
        if not records:
            return []

        base_filter: Dict[str, Any] = {
            "message_app": {"$in": [app.value for app in message_apps]},
            "status": {"$ne": UserStatus.BLOCKED.value},
        }
        if user_ids is not None:
            base_filter["_id"] = {"$in": list(user_ids)}

        matches: Dict[int, UserMatches] = {}
        await self._match_people(records, base_filter, matches)
        await self._match_names(records, base_filter, matches)
        await self._match_functions(records, base_filter, matches)
        await self._match_organisations(records, base_filter, matches)

        return [
            user_matches
            for user_matches in matches.values()
            if user_matches.names or not user_matches.is_empty()
        ]

    @staticmethod
    def _matches_for(user: User, matches: Dict[int, UserMatches]) -> UserMatches:
        if user.id not in matches:
            matches[user.id] = UserMatches(user=user)
        return matches[user.id]

    @staticmethod
    def _records_by_person_key(
        records: List[GazetteRecord],
    ) -> Dict[str, List[GazetteRecord]]:
        by_key: Dict[str, List[GazetteRecord]] = {}
        for record in records:
            key = person_name_key(record.surname, record.given_name)
            by_key.setdefault(key, []).append(record)
        return by_key

    async def _match_people(
        self,
        records: List[GazetteRecord],
        base_filter: Dict[str, Any],
        matches: Dict[int, UserMatches],
    ) -> None:
        by_key = self._records_by_person_key(records)
        people = await self.repository.find_people_by_name_keys(by_key)
        if not people:
            return

        records_by_person = {person.id: by_key[key] for key, person in people.items()}
        users = await self.repository.find_users(
            {
                **base_filter,
                "followed_people.person_id": {"$in": list(records_by_person)},
            }
        )

        for user in users:
            for follow in user.followed_people:
                candidates = records_by_person.get(follow.person_id)
                if not candidates:
                    continue
                fresh = [r for r in candidates if r.published_at > follow.last_update]
                if fresh:
                    self._matches_for(user, matches).people[follow.person_id] = fresh

        logger.info(f"People follows: {len(users)} users checked")

    async def _match_names(
        self,
        records: List[GazetteRecord],
        base_filter: Dict[str, Any],
        matches: Dict[int, UserMatches],
    ) -> None:
        users = await self.repository.find_users(
            {**base_filter, "followed_names": {"$exists": True}}
        )
        if not users:
            return

        by_key = self._records_by_person_key(records)
        permutations: Dict[str, str] = {}
        for key, person_records in by_key.items():
            first = person_records[0]
            for ordering in (
                f"{first.surname} {first.given_name}",
                f"{first.given_name} {first.surname}",
            ):
                permutations.setdefault(clean_people_name(ordering), key)

        for user in users:
            already_followed = {follow.person_id for follow in user.followed_people}
            name_matches: List[NameMatch] = []
            for followed_name in user.followed_names:
                key = permutations.get(clean_people_name(followed_name))
                if key is None:
                    continue
                person_records = by_key[key]
                person = await self.repository.find_or_create_person(
                    person_records[0].surname, person_records[0].given_name
                )
                name_matches.append(
                    NameMatch(
                        followed_name,
                        person,
                        person_records,
                        already_followed=person.id in already_followed,
                    )
                )

            if name_matches:
                self._matches_for(user, matches).names.extend(name_matches)
                logger.info(f"User {user.id}: {len(name_matches)} followed names matched")

    async def _match_functions(
        self,
        records: List[GazetteRecord],
        base_filter: Dict[str, Any],
        matches: Dict[int, UserMatches],
    ) -> None:
        tag_map = build_function_tag_map(records, [tag.value for tag in FunctionTag])
        if not tag_map:
            return

        users = await self.repository.find_users(
            {**base_filter, "followed_functions.function_tag": {"$in": list(tag_map)}}
        )
        for user in users:
            for follow in user.followed_functions:
                candidates = tag_map.get(follow.function_tag)
                if not candidates:
                    continue
                fresh = [r for r in candidates if r.published_at > follow.last_update]
                if fresh:
                    self._matches_for(user, matches).functions[follow.function_tag] = fresh

    async def _match_organisations(
        self,
        records: List[GazetteRecord],
        base_filter: Dict[str, Any],
        matches: Dict[int, UserMatches],
    ) -> None:
        known = await self.repository.list_organisations()
        organisation_map: Dict[str, List[GazetteRecord]] = {}
        for record in records:
            ids = dict.fromkeys(
                org.wikidata_id for org in record.organisations if org.wikidata_id
            )
            for organisation_id in ids:
                if organisation_id in known:
                    organisation_map.setdefault(organisation_id, []).append(record)
        if not organisation_map:
            return

        users = await self.repository.find_users(
            {
                **base_filter,
                "followed_organisations.organisation_id": {"$in": list(organisation_map)},
            }
        )
        for user in users:
            for follow in user.followed_organisations:
                candidates = organisation_map.get(follow.organisation_id)
                if not candidates:
                    continue
                name = known.get(follow.organisation_id)
                if not name:
                    logger.warning(
                        "Unable to find the name of the organisation with wikidataId "
                        f"{follow.organisation_id}"
                    )
                    continue
                fresh = [r for r in candidates if r.published_at > follow.last_update]
                if fresh:
                    user_matches = self._matches_for(user, matches)
                    user_matches.organisations[follow.organisation_id] = fresh
                    user_matches.organisation_names[follow.organisation_id] = name


def build_notification_task(matches: UserMatches) -> NotificationTask:
    """Combine a user's matches into one task, records grouped by reference."""
    records_by_reference: Dict[str, List[GazetteRecord]] = {}
    all_records = [
        record for category in matches.categories() for record in matches.records_for(category)
    ]
    for record in dedupe_records(all_records):
        records_by_reference.setdefault(record.source_id, []).append(record)

    return NotificationTask(
        user=matches.user,
        matches=matches,
        records_by_reference=records_by_reference,
        record_count=matches.record_count,
    )
