from __future__ import annotations

import logging

import httpx

from normalize.models import DisasterRecord, record_to_dict


logger = logging.getLogger(__name__)


class HttpEmailRelay:
    """Hands disaster alerts to an external mail relay over HTTP.

    The relay owns recipient lists and delivery; a non-2xx answer or a
    transport error is reported as a failed send.
    """

    def __init__(self, client: httpx.AsyncClient, *, url: str, user_agent: str) -> None:
        self._client = client
        self._url = url
        self._user_agent = user_agent

    async def send(self, record: DisasterRecord) -> bool:
        payload = {
            "subject": f"[{record.alert_level or 'GDACS'}] {record.title}",
            "disaster": record_to_dict(record),
        }
        try:
            res = await self._client.post(
                self._url,
                json=payload,
                headers={"User-Agent": self._user_agent, "Accept": "application/json"},
                timeout=httpx.Timeout(connect=5.0, read=15.0, write=5.0, pool=5.0),
            )
        except httpx.RequestError as e:
            logger.warning(
                "email relay unreachable for disaster %s: %s",
                record.id,
                e.__class__.__name__,
            )
            return False
        if not res.is_success:
            logger.warning(
                "email relay rejected disaster %s: http_%d", record.id, res.status_code
            )
        return res.is_success
