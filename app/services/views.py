from typing import Dict, Iterable, List, Optional

from app.repositories.base import PersistencePort
from app.schemas.appointment import AppointmentRecord, AppointmentView
from app.schemas.profile import Profile


class AppointmentViewBuilder:
    """Adds provider and patient display names to appointment records.

    Names are looked up on every read and fall back to "Provider" and
    "Patient" when a profile is missing.
    """

    def __init__(self, persistence: PersistencePort):
        self.persistence = persistence

    async def build(self, record: AppointmentRecord) -> AppointmentView:
        return (await self.build_many([record]))[0]

    async def build_many(
        self, records: Iterable[AppointmentRecord]
    ) -> List[AppointmentView]:
        records = list(records)
        ids = {r.provider_id for r in records} | {r.user_id for r in records}
        profiles: Dict[str, Optional[Profile]] = {}
        for profile_id in ids:
            profiles[profile_id] = await self.persistence.get_profile(profile_id)

        views = []
        for record in records:
            provider = profiles.get(record.provider_id)
            user = profiles.get(record.user_id)
            views.append(
                AppointmentView(
                    **record.model_dump(),
                    provider_name=provider.full_name if provider else "Provider",
                    provider_avatar=provider.avatar_url if provider else None,
                    user_name=user.full_name if user else "Patient",
                )
            )
        return views
