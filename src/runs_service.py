"""
REST client for the runs backend.

Every call is a blocking HTTP request made with a shared requests.Session;
the packing session player decides which calls run on a worker thread.

Error mapping (applied to every endpoint):
    transport failure      -> NetworkError
    401                    -> UnauthorizedError
    403                    -> InsufficientPermissionsError
    404                    -> endpoint specific *NotFoundError
    409 on box create      -> ChocolateBoxNumberExistsError
    any other non-2xx      -> ServiceError(status_code)
    undecodable body       -> InvalidResponseError
"""

from typing import Any, Dict, Iterable, List, Optional, Tuple, Type
from urllib.parse import quote

import requests

from audio_commands import AudioCommandsResponse
from exceptions import (
    ChocolateBoxNumberExistsError,
    InsufficientPermissionsError,
    InvalidResponseError,
    NetworkError,
    PackingSessionNotFoundError,
    PickEntryNotFoundError,
    RunNotFoundError,
    ServiceError,
    UnauthorizedError,
    ValidationError,
)
from logger import get_logger
from run_models import ChocolateBox, PackingSession, PackingSessionResult, RunDetail

logger = get_logger(__name__)


def _segment(value: str) -> str:
    return quote(str(value), safe='')


class RunsService:
    """
    Backend operations used by a packing session.

    Attributes:
        base_url (str): API root, e.g. https://api.example.com/api
        timeout (float): Per-request timeout in seconds
    """

    def __init__(
        self,
        base_url: str,
        access_token: str = "",
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update({"Accept": "application/json"})
        if access_token:
            self._session.headers["Authorization"] = f"Bearer {access_token}"

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        not_found: Type[ServiceError] = RunNotFoundError,
        conflict: Optional[Type[ServiceError]] = None,
        tolerated: Iterable[int] = (),
        **kwargs: Any,
    ) -> Optional[requests.Response]:
        """
        Send a request and map failures onto the application exceptions.

        Returns:
            The response, or None when its status is listed in tolerated
        """
        url = f"{self.base_url}/{path}"
        logger.debug(f"{method} {url}")

        try:
            resp = self._session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.error(f"{method} {path} failed: {e}")
            raise NetworkError(f"Request to {path} failed: {e}") from e

        status = resp.status_code
        if status in tolerated:
            return None
        if 200 <= status < 300:
            return resp

        logger.warning(f"{method} {path} returned HTTP {status}")
        if status == 401:
            raise UnauthorizedError(f"Unauthorized: {method} {path}")
        if status == 403:
            raise InsufficientPermissionsError()
        if status == 404:
            raise not_found()
        if status == 409 and conflict is not None:
            raise conflict()
        raise ServiceError(f"{method} {path} returned HTTP {status}", status_code=status)

    @staticmethod
    def _json(resp: requests.Response) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            raise InvalidResponseError(f"Response from {resp.url} is not valid JSON") from e

    def _decode(self, resp: requests.Response, factory):
        data = self._json(resp)
        try:
            return factory(data)
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            raise InvalidResponseError(f"Unexpected payload from {resp.url}: {e}") from e

    # ------------------------------------------------------------------
    # Session load
    # ------------------------------------------------------------------

    def fetch_audio_commands(self, run_id: str, packing_session_id: Optional[str] = None) -> AudioCommandsResponse:
        params = {"packingSessionId": packing_session_id} if packing_session_id else None
        resp = self._request("GET", f"runs/{_segment(run_id)}/audio-commands", params=params)
        return self._decode(resp, AudioCommandsResponse.from_dict)

    def fetch_run_detail(self, run_id: str) -> RunDetail:
        resp = self._request("GET", f"runs/{_segment(run_id)}")
        return self._decode(resp, RunDetail.from_dict)

    def fetch_chocolate_boxes(self, run_id: str) -> List[ChocolateBox]:
        resp = self._request("GET", f"runs/{_segment(run_id)}/chocolate-boxes")
        return self._decode(resp, lambda data: [ChocolateBox.from_dict(item) for item in data])

    # ------------------------------------------------------------------
    # Pick status
    # ------------------------------------------------------------------

    def update_pick_statuses(self, run_id: str, pick_ids: Iterable[str], is_picked: bool) -> None:
        """
        Mark pick entries picked or not picked.

        Blank and duplicate ids are dropped; an empty list sends nothing.
        """
        unique_ids: List[str] = []
        for pick_id in pick_ids:
            cleaned = (pick_id or '').strip()
            if cleaned and cleaned not in unique_ids:
                unique_ids.append(cleaned)

        if not unique_ids:
            return

        self._request(
            "PATCH",
            f"runs/{_segment(run_id)}/picks/status",
            not_found=PickEntryNotFoundError,
            json={"pickIds": unique_ids, "isPicked": is_picked},
        )
        logger.info(f"Updated {len(unique_ids)} pick entries (picked={is_picked}) for run {run_id}")

    def update_pick_entry_override(self, run_id: str, pick_id: str, override_count: Optional[int]) -> None:
        """Set the quantity override of a pick entry; None clears it."""
        self._request(
            "PATCH",
            f"runs/{_segment(run_id)}/picks/{_segment(pick_id)}/override",
            not_found=PickEntryNotFoundError,
            json={"overrideCount": override_count},
        )

    def replace_pick_entry_expiry_overrides(
        self, run_id: str, pick_id: str, overrides: Iterable[Tuple[str, int]]
    ) -> None:
        """
        Replace every expiry override of a pick entry.

        Args:
            overrides: (expiry_date, quantity) pairs; an empty list clears them
        """
        payload = [{"expiryDate": expiry_date, "quantity": quantity} for expiry_date, quantity in overrides]
        self._request(
            "PUT",
            f"runs/{_segment(run_id)}/picks/{_segment(pick_id)}/expiry-overrides",
            not_found=PickEntryNotFoundError,
            json={"overrides": payload},
        )

    # ------------------------------------------------------------------
    # Packing session lifecycle
    # ------------------------------------------------------------------

    def create_packing_session(self, run_id: str, categories: Optional[List[Optional[str]]] = None) -> PackingSession:
        body: Dict[str, Any] = {}
        if categories:
            body["categories"] = categories
        resp = self._request(
            "POST",
            f"runs/{_segment(run_id)}/packing-sessions",
            not_found=RunNotFoundError,
            json=body,
        )
        session = self._decode(resp, PackingSession.from_dict)
        logger.info(f"Created packing session {session.id} for run {run_id}")
        return session

    def fetch_active_packing_session(self, run_id: str) -> Optional[PackingSession]:
        """The picker's open packing session for the run, or None."""
        resp = self._request(
            "GET",
            f"runs/{_segment(run_id)}/packing-sessions/active",
            tolerated=(304, 404),
        )
        if resp is None or not resp.content:
            return None
        return self._decode(resp, PackingSession.from_dict)

    def abandon_packing_session(self, run_id: str, packing_session_id: str) -> PackingSessionResult:
        resp = self._request(
            "POST",
            f"runs/{_segment(run_id)}/packing-sessions/{_segment(packing_session_id)}/abandon",
            not_found=PackingSessionNotFoundError,
        )
        result = self._decode(resp, PackingSessionResult.from_dict)
        logger.info(
            f"Abandoned packing session {packing_session_id}: "
            f"status={result.status}, cleared={result.cleared_pick_entries}"
        )
        return result

    def finish_packing_session(self, run_id: str, packing_session_id: str) -> PackingSessionResult:
        resp = self._request(
            "POST",
            f"runs/{_segment(run_id)}/packing-sessions/{_segment(packing_session_id)}/finish",
            not_found=PackingSessionNotFoundError,
        )
        result = self._decode(resp, PackingSessionResult.from_dict)
        logger.info(
            f"Finished packing session {packing_session_id}: "
            f"status={result.status}, cleared={result.cleared_pick_entries}"
        )
        return result

    # ------------------------------------------------------------------
    # Chocolate boxes
    # ------------------------------------------------------------------

    def create_chocolate_box(self, run_id: str, number: int, machine_id: str) -> ChocolateBox:
        resp = self._request(
            "POST",
            f"runs/{_segment(run_id)}/chocolate-boxes",
            conflict=ChocolateBoxNumberExistsError,
            json={"number": number, "machineId": machine_id},
        )
        return self._decode(resp, ChocolateBox.from_dict)

    def delete_chocolate_box(self, run_id: str, box_id: str) -> None:
        self._request("DELETE", f"runs/{_segment(run_id)}/chocolate-boxes/{_segment(box_id)}")

    # ------------------------------------------------------------------
    # SKU adjustments
    # ------------------------------------------------------------------

    def update_sku_count_pointer(self, sku_id: str, count_needed_pointer: str) -> None:
        self._request(
            "PATCH",
            f"skus/{_segment(sku_id)}/count-pointer",
            json={"countNeededPointer": count_needed_pointer},
        )

    def update_sku_fresh_status(self, sku_id: str, is_fresh_or_frozen: bool) -> None:
        self._request(
            "PATCH",
            f"skus/{_segment(sku_id)}/fresh-or-frozen",
            json={"isFreshOrFrozen": is_fresh_or_frozen},
        )
