# path: streetview-route-api/app/services/viewpoint_resolver.py

from __future__ import annotations

from typing import Callable, Dict, Iterable, List, Optional, Set
import asyncio
import logging

import httpx

from app.errors import (
    FETCH_FAILED_REASON,
    FetchFailedError,
    InvalidTransitionError,
)
from app.models.viewpoint_models import ImageResource, LoadState, ViewRenderOptions, Viewpoint
from app.services.streetview_client import StreetViewClient, validate_api_key


logger = logging.getLogger(__name__)

Subscriber = Callable[[Viewpoint, LoadState], None]

ALLOWED_TRANSITIONS = {
    LoadState.PENDING: {LoadState.LOADING},
    LoadState.LOADING: {LoadState.LOADED, LoadState.FAILED},
    LoadState.FAILED: {LoadState.LOADING},
    LoadState.LOADED: set(),
}
TERMINAL_STATES = {LoadState.LOADED, LoadState.FAILED}


class ViewpointStateMachine:
    """
    Owns the viewpoint records of one sampled route and their load state.

    Records are immutable; each transition replaces the record for its id and
    notifies subscribers with (new_record, previous_state).
    """

    def __init__(self, viewpoints: Iterable[Viewpoint]) -> None:
        self._order: List[str] = []
        self._records: Dict[str, Viewpoint] = {}
        for vp in viewpoints:
            self._order.append(vp.id)
            self._records[vp.id] = vp
        self._subscribers: List[Subscriber] = []

    def __len__(self) -> int:
        return len(self._order)

    def get(self, viewpoint_id: str) -> Viewpoint:
        return self._records[viewpoint_id]

    def get_by_index(self, index: int) -> Viewpoint:
        if not 0 <= index < len(self._order):
            raise IndexError(f"viewpoint index out of range: {index}")
        return self._records[self._order[index]]

    def list(self) -> List[Viewpoint]:
        return [self._records[i] for i in self._order]

    def counts(self) -> Dict[str, int]:
        out = {s.value: 0 for s in LoadState}
        for vp in self._records.values():
            out[vp.load_state.value] += 1
        return out

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def transition(
        self,
        viewpoint_id: str,
        new_state: LoadState,
        resource: Optional[ImageResource] = None,
        error: Optional[str] = None,
    ) -> Optional[Viewpoint]:
        current = self._records.get(viewpoint_id)
        if current is None:
            # Sequence was regenerated while a fetch was in flight.
            logger.debug("Ignoring %s write for unknown viewpoint %s", new_state.value, viewpoint_id)
            return None

        previous = current.load_state
        if previous == new_state and new_state in TERMINAL_STATES:
            return current
        if new_state not in ALLOWED_TRANSITIONS[previous]:
            raise InvalidTransitionError(f"{previous.value} -> {new_state.value} not allowed for viewpoint {viewpoint_id}")

        updated = current.model_copy(
            update={
                "load_state": new_state,
                "resource": resource if new_state == LoadState.LOADED else None,
                "error": error if new_state == LoadState.FAILED else None,
            }
        )
        self._records[viewpoint_id] = updated
        for callback in list(self._subscribers):
            callback(updated, previous)
        return updated


class ViewpointResolver:
    """Turns viewpoints into loaded image resources; the only writer of load state."""

    def __init__(
        self,
        store: ViewpointStateMachine,
        client: StreetViewClient,
        prefetch_delay: float = 0.5,
    ) -> None:
        self.store = store
        self.client = client
        self.prefetch_delay = prefetch_delay
        self.cursor: Optional[int] = None
        self._tasks: Set[asyncio.Task] = set()

    async def resolve(self, viewpoint_id: str, options: ViewRenderOptions) -> Viewpoint:
        validate_api_key(options.credential)

        vp = self.store.get(viewpoint_id)
        if vp.load_state in (LoadState.LOADED, LoadState.LOADING):
            return vp

        # Must happen before the first await so concurrent callers see LOADING.
        self.store.transition(viewpoint_id, LoadState.LOADING)
        try:
            url = self.client.build_url(vp.coordinates, vp.heading, options)
            body, content_type = await self.client.fetch_image(url)
        except (httpx.HTTPError, httpx.StreamError, httpx.InvalidURL, FetchFailedError) as e:
            logger.warning("Failed to load viewpoint %d (%s): %s", vp.index, viewpoint_id, e)
            failed = self.store.transition(viewpoint_id, LoadState.FAILED, error=FETCH_FAILED_REASON)
            return failed or vp
        except Exception:
            logger.exception("Unexpected error loading viewpoint %d (%s)", vp.index, viewpoint_id)
            failed = self.store.transition(viewpoint_id, LoadState.FAILED, error=FETCH_FAILED_REASON)
            return failed or vp
        except BaseException:
            # Cancelled mid-fetch; leave the viewpoint retryable.
            self.store.transition(viewpoint_id, LoadState.FAILED, error=FETCH_FAILED_REASON)
            raise

        resource = ImageResource(url=url, content_type=content_type, size_bytes=len(body))
        loaded = self.store.transition(viewpoint_id, LoadState.LOADED, resource=resource)
        return loaded or vp

    async def set_cursor(self, index: int, options: ViewRenderOptions) -> Viewpoint:
        """Resolve the viewpoint at index now; schedule its neighbours after prefetch_delay."""
        validate_api_key(options.credential)
        current = self.store.get_by_index(index)
        self.cursor = index

        for neighbour in (index - 1, index + 1):
            if 0 <= neighbour < len(self.store):
                self._schedule_prefetch(self.store.get_by_index(neighbour).id, options)

        return await self.resolve(current.id, options)

    def _schedule_prefetch(self, viewpoint_id: str, options: ViewRenderOptions) -> None:
        task = asyncio.create_task(self._prefetch(viewpoint_id, options))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _prefetch(self, viewpoint_id: str, options: ViewRenderOptions) -> None:
        await asyncio.sleep(self.prefetch_delay)
        if self.store.get(viewpoint_id).load_state in (LoadState.LOADED, LoadState.LOADING):
            return
        await self.resolve(viewpoint_id, options)

    async def preload_all(
        self,
        options: ViewRenderOptions,
        on_progress: Optional[Callable[[int, int], None]] = None,
        concurrency: int = 4,
    ) -> List[Viewpoint]:
        validate_api_key(options.credential)
        sem = asyncio.Semaphore(concurrency)
        total = len(self.store)
        done = 0

        async def _one(vp: Viewpoint) -> Viewpoint:
            nonlocal done
            async with sem:
                result = await self.resolve(vp.id, options)
            done += 1
            if on_progress:
                on_progress(done, total)
            return result

        return list(await asyncio.gather(*(_one(vp) for vp in self.store.list())))

    async def wait_idle(self) -> None:
        """Wait for outstanding prefetches, including ones they schedule."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))
