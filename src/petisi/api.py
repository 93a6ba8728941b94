"""petisi REST API: FastAPI service hosting petition form sessions.

Each browser tab opens a form session and drives it step by step; the
session holds the form state machine, the address cascade and the
signature pad. The sidebar reads the live count and recent signers,
which follow the store's realtime INSERT events for as long as the
application runs.
"""

import logging
import time
import uuid
from collections import OrderedDict
from contextlib import asynccontextmanager
from datetime import date
from typing import AsyncIterator, Callable, Literal, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, Response
from pydantic import BaseModel

from . import __version__
from .cascade import AddressCascade, AddressLevel
from .config import Settings
from .form import (
    PetitionForm,
    StepBlocked,
    submit_failure_message,
)
from .geo import GeoLookupClient
from .letter import (
    ExportError,
    build_letter,
    content_disposition,
    export_pdf,
    pdf_filename,
    render_html,
)
from .live import LiveStats, RecentSigners, format_location, format_relative_time, subscribed
from .models import (
    FIXED_REASON,
    VILLAGE_POSITIONS,
    AdministrativeUnit,
    District,
    FormStep,
    Province,
    Regency,
    SignerRecord,
    Village,
)
from .signature_pad import (
    BoundingRect,
    PointerEvent,
    SignaturePad,
    SignatureTooLarge,
    TouchPoint,
    check_signature,
)
from .store import PetitionStore
from .submission import SubmissionClient, SubmissionError
from .suggestion import SupportSuggester

logger = logging.getLogger("petisi.api")

VERSION = __version__


# ---------------------------------------------------------------------------
# Form sessions
# ---------------------------------------------------------------------------

class FormSession:
    """One in-progress petition: form, cascade and pad wired together."""

    def __init__(
        self,
        session_id: str,
        submitter: SubmissionClient,
        geo: GeoLookupClient,
        max_signature_bytes: int,
    ) -> None:
        self.session_id = session_id
        self.alerts: list[str] = []
        self.form = PetitionForm(submitter, alert=self.alerts.append)
        self.cascade = AddressCascade(geo, on_change=self.form.on_address_change)
        self.pad = SignaturePad(
            on_sign=self.form.on_sign,
            on_clear=self.form.on_clear,
            on_reject=self.alerts.append,
            max_bytes=max_signature_bytes,
        )

    def reset(self) -> None:
        self.form.reset()
        self.cascade.reset()
        self.pad.clear()
        self.alerts.clear()

    def drain_alerts(self) -> list[str]:
        alerts = list(self.alerts)
        self.alerts.clear()
        return alerts


class SessionRegistry:
    """Open form sessions, least recently used first.

    Sessions idle for longer than ``ttl_seconds`` are dropped on the next
    access, and opening a session beyond ``max_sessions`` evicts the
    least recently used one.
    """

    def __init__(
        self,
        ttl_seconds: float,
        max_sessions: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_sessions = max(1, max_sessions)
        self._clock = clock
        self._sessions: "OrderedDict[str, tuple[FormSession, float]]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def add(self, session: FormSession) -> None:
        self.prune()
        while len(self._sessions) >= self.max_sessions:
            evicted, _ = self._sessions.popitem(last=False)
            logger.info("Evicted form %s (capacity)", evicted[:8])
        self._sessions[session.session_id] = (session, self._clock())

    def get(self, session_id: str) -> FormSession:
        """Return a live session and mark it as used.

        Raises:
            KeyError: If the session is unknown or has expired.
        """
        self.prune()
        session, _ = self._sessions.pop(session_id)
        self._sessions[session_id] = (session, self._clock())
        return session

    def pop(self, session_id: str, default: Optional[FormSession] = None) -> Optional[FormSession]:
        entry = self._sessions.pop(session_id, None)
        return entry[0] if entry is not None else default

    def prune(self) -> int:
        """Drop idle sessions; returns how many were removed."""
        cutoff = self._clock() - self.ttl_seconds
        removed = 0
        while self._sessions:
            session_id, (_, touched) = next(iter(self._sessions.items()))
            if touched > cutoff:
                break
            del self._sessions[session_id]
            removed += 1
            logger.info("Expired idle form %s", session_id[:8])
        return removed


class _NullStore:
    """Stands in when no store credentials are configured."""

    async def insert_signature(self, row: dict) -> dict:
        raise RuntimeError("Signature store is not configured")


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------

class DetailsRequest(BaseModel):
    """Request body for the identity step."""

    full_name: Optional[str] = None
    position: Optional[str] = None


class AddressRequest(BaseModel):
    """Select ``unit_id`` at ``level`` (empty id selects nothing)."""

    level: AddressLevel
    unit_id: Optional[str] = None


class SignatureRequest(BaseModel):
    """A signature drawn in the browser, as a PNG data URI."""

    data_uri: str


class TouchModel(BaseModel):
    client_x: float
    client_y: float


class StrokeEvent(BaseModel):
    type: Literal["press", "move", "release", "leave"]
    client_x: float = 0.0
    client_y: float = 0.0
    touches: list[TouchModel] = []


class RectModel(BaseModel):
    left: float = 0.0
    top: float = 0.0
    width: float
    height: float = 200.0


class StrokesRequest(BaseModel):
    """Pointer events replayed on the server-side pad.

    ``container_width`` resizes (and therefore erases) the surface first
    when it differs from the current width.
    """

    events: list[StrokeEvent]
    container_width: Optional[int] = None
    rect: Optional[RectModel] = None


class LevelState(BaseModel):
    level: AddressLevel
    selected: Optional[AdministrativeUnit] = None
    options: list[AdministrativeUnit] = []
    loading: bool = False
    enabled: bool = True


class StepState(BaseModel):
    step: FormStep
    label: str
    reached: bool


class FormState(BaseModel):
    """Snapshot of a form session returned by every form endpoint."""

    session_id: str
    step: FormStep
    progress: list[StepState]
    record: SignerRecord
    has_signature: bool
    submittable: bool
    submitting: bool
    reason_text: str = FIXED_REASON
    address: list[LevelState]
    alerts: list[str] = []


class StatsResponse(BaseModel):
    total: int
    target: int
    percentage: float
    loading: bool
    live: bool


class SignerEntry(BaseModel):
    id: str
    full_name: str
    initial: str
    position: str
    location: str
    time_ago: str


class SuggestionRequest(BaseModel):
    position: str
    location: str


class SuggestionResponse(BaseModel):
    text: str


def _snapshot(session: FormSession) -> FormState:
    form = session.form
    cascade = session.cascade
    return FormState(
        session_id=session.session_id,
        step=form.step,
        progress=[
            StepState(step=step, label=step.label, reached=reached)
            for step, reached in form.progress
        ],
        record=form.record,
        has_signature=bool(form.record.signature),
        submittable=form.record.is_submittable,
        submitting=form.submitting,
        address=[
            LevelState(
                level=level,
                selected=cascade.state.selected_at(level),
                options=list(cascade.state.options_at(level)),
                loading=cascade.is_loading(level),
                enabled=cascade.is_enabled(level),
            )
            for level in AddressLevel
        ],
        alerts=session.drain_alerts(),
    )


def _refused(session: FormSession, status_code: int, detail: str) -> HTTPException:
    # the detail already carries the alert text
    session.drain_alerts()
    return HTTPException(status_code=status_code, detail=detail)


def _to_pointer(event: StrokeEvent) -> PointerEvent:
    return PointerEvent(
        client_x=event.client_x,
        client_y=event.client_y,
        touches=tuple(TouchPoint(t.client_x, t.client_y) for t in event.touches),
    )


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app(
    settings: Optional[Settings] = None,
    store: Optional[PetitionStore] = None,
    geo: Optional[GeoLookupClient] = None,
    suggester: Optional[SupportSuggester] = None,
) -> FastAPI:
    """Build the API with explicit collaborators.

    Anything not passed in is built from ``settings`` (read from the
    environment by default) when the application starts.
    """
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        state = app.state
        state.store = store
        if state.store is None and settings.supabase_url and settings.supabase_key:
            state.store = await PetitionStore.connect(settings)
        if state.store is None:
            logger.warning("No signature store configured; submissions will fail")

        state.geo = geo or GeoLookupClient(
            base_url=settings.geo_base_url, timeout=settings.geo_timeout_seconds
        )
        state.suggester = suggester or SupportSuggester(
            api_key=settings.gemini_api_key, model=settings.gemini_model
        )
        state.submitter = SubmissionClient(state.store or _NullStore())
        state.sessions = SessionRegistry(
            ttl_seconds=settings.session_ttl_seconds,
            max_sessions=settings.max_sessions,
        )
        state.stats = None
        state.signers = None

        try:
            if state.store is not None:
                state.stats = LiveStats(state.store, target=settings.signature_target)
                state.signers = RecentSigners(state.store)
                async with subscribed(state.stats, state.signers):
                    yield
            else:
                yield
        finally:
            if geo is None:
                await state.geo.aclose()

    app = FastAPI(
        title="petisi",
        description="Formulir Pernyataan Sikap Aparatur Desa.",
        version=VERSION,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def get_session(request: Request, session_id: str) -> FormSession:
        try:
            return request.app.state.sessions.get(session_id)
        except KeyError:
            raise HTTPException(status_code=404, detail="Form not found")

    # -----------------------------------------------------------------------
    # Reference data
    # -----------------------------------------------------------------------

    @app.get("/api/health")
    async def health(request: Request) -> dict:
        """Health check."""
        return {
            "status": "ok",
            "service": "petisi",
            "version": VERSION,
            "store": request.app.state.store is not None,
        }

    @app.get("/api/positions", response_model=list[str])
    async def positions() -> list[str]:
        """Roles a signer can choose from."""
        return VILLAGE_POSITIONS

    @app.get("/api/geo/provinces", response_model=list[Province])
    async def provinces(request: Request) -> list[Province]:
        return await request.app.state.geo.get_provinces()

    @app.get("/api/geo/regencies/{province_id}", response_model=list[Regency])
    async def regencies(request: Request, province_id: str) -> list[Regency]:
        return await request.app.state.geo.get_regencies(province_id)

    @app.get("/api/geo/districts/{regency_id}", response_model=list[District])
    async def districts(request: Request, regency_id: str) -> list[District]:
        return await request.app.state.geo.get_districts(regency_id)

    @app.get("/api/geo/villages/{district_id}", response_model=list[Village])
    async def villages(request: Request, district_id: str) -> list[Village]:
        return await request.app.state.geo.get_villages(district_id)

    # -----------------------------------------------------------------------
    # Form sessions
    # -----------------------------------------------------------------------

    @app.post("/api/forms", response_model=FormState, status_code=201)
    async def create_form(request: Request) -> FormState:
        """Open a new form session and load the province list."""
        state = request.app.state
        session = FormSession(
            str(uuid.uuid4()), state.submitter, state.geo, settings.max_signature_bytes
        )
        await session.cascade.mount()
        state.sessions.add(session)
        logger.info("Opened form %s", session.session_id[:8])
        return _snapshot(session)

    @app.get("/api/forms/{session_id}", response_model=FormState)
    async def get_form(request: Request, session_id: str) -> FormState:
        return _snapshot(get_session(request, session_id))

    @app.delete("/api/forms/{session_id}", status_code=204)
    async def delete_form(request: Request, session_id: str) -> None:
        """Discard a form session."""
        if request.app.state.sessions.pop(session_id, None) is None:
            raise HTTPException(status_code=404, detail="Form not found")

    @app.put("/api/forms/{session_id}/details", response_model=FormState)
    async def update_details(request: Request, session_id: str, req: DetailsRequest) -> FormState:
        session = get_session(request, session_id)
        try:
            if req.full_name is not None:
                session.form.set_full_name(req.full_name)
            if req.position is not None:
                session.form.set_position(req.position)
        except StepBlocked as exc:
            raise _refused(session, 400, str(exc))
        return _snapshot(session)

    @app.post("/api/forms/{session_id}/address", response_model=FormState)
    async def select_address(request: Request, session_id: str, req: AddressRequest) -> FormState:
        """Select a unit at one level; lower levels are cleared and reloaded."""
        session = get_session(request, session_id)
        try:
            session.form.ensure_open()
            await session.cascade.select(req.level, req.unit_id)
        except StepBlocked as exc:
            raise _refused(session, 400, str(exc))
        return _snapshot(session)

    @app.post("/api/forms/{session_id}/signature", response_model=FormState)
    async def set_signature(request: Request, session_id: str, req: SignatureRequest) -> FormState:
        """Accept a browser-drawn signature after checking its size."""
        session = get_session(request, session_id)
        try:
            try:
                check_signature(req.data_uri, settings.max_signature_bytes)
            except SignatureTooLarge as exc:
                session.form.on_clear()
                raise _refused(session, 413, str(exc))
            session.form.on_sign(req.data_uri)
        except ValueError as exc:
            # malformed data URI or a closed form
            raise _refused(session, 400, str(exc))
        return _snapshot(session)

    @app.post("/api/forms/{session_id}/signature/strokes", response_model=FormState)
    async def draw_strokes(request: Request, session_id: str, req: StrokesRequest) -> FormState:
        """Replay pointer events on the session's signature pad."""
        session = get_session(request, session_id)
        pad = session.pad
        try:
            rect = BoundingRect(**req.rect.model_dump()) if req.rect else None
            if req.container_width is not None and req.container_width != pad.width:
                pad.resize(req.container_width, rect)
            elif rect is not None:
                pad.rect = rect
            for event in req.events:
                if event.type == "press":
                    pad.press(_to_pointer(event))
                elif event.type == "move":
                    pad.move(_to_pointer(event))
                elif event.type == "release":
                    pad.release()
                else:
                    pad.leave()
        except StepBlocked as exc:
            raise _refused(session, 400, str(exc))
        return _snapshot(session)

    @app.delete("/api/forms/{session_id}/signature", response_model=FormState)
    async def clear_signature(request: Request, session_id: str) -> FormState:
        session = get_session(request, session_id)
        try:
            session.pad.clear()
        except StepBlocked as exc:
            raise _refused(session, 400, str(exc))
        return _snapshot(session)

    @app.post("/api/forms/{session_id}/next", response_model=FormState)
    async def next_step(request: Request, session_id: str) -> FormState:
        session = get_session(request, session_id)
        try:
            session.form.next()
        except StepBlocked as exc:
            raise _refused(session, 400, str(exc))
        return _snapshot(session)

    @app.post("/api/forms/{session_id}/back", response_model=FormState)
    async def previous_step(request: Request, session_id: str) -> FormState:
        session = get_session(request, session_id)
        try:
            session.form.back()
        except StepBlocked as exc:
            raise _refused(session, 400, str(exc))
        return _snapshot(session)

    @app.post("/api/forms/{session_id}/submit", response_model=FormState)
    async def submit(request: Request, session_id: str) -> FormState:
        """Submit the petition once.

        Stays on the signature step when the store write fails.
        """
        session = get_session(request, session_id)
        try:
            await session.form.submit()
        except StepBlocked as exc:
            raise _refused(session, 400, str(exc))
        except SubmissionError as exc:
            raise _refused(session, 502, submit_failure_message(exc.message))
        return _snapshot(session)

    @app.post("/api/forms/{session_id}/reset", response_model=FormState)
    async def reset_form(request: Request, session_id: str) -> FormState:
        session = get_session(request, session_id)
        try:
            session.reset()
        except StepBlocked as exc:
            raise _refused(session, 409, str(exc))
        return _snapshot(session)

    def _finished_record(session: FormSession) -> SignerRecord:
        if session.form.step != FormStep.SUCCESS:
            raise HTTPException(
                status_code=409, detail="The letter is available after submission"
            )
        return session.form.record

    @app.get("/api/forms/{session_id}/letter", response_class=HTMLResponse)
    async def letter_html(request: Request, session_id: str) -> HTMLResponse:
        record = _finished_record(get_session(request, session_id))
        return HTMLResponse(render_html(build_letter(record, date.today())))

    @app.get("/api/forms/{session_id}/letter.pdf")
    async def letter_pdf(request: Request, session_id: str) -> Response:
        """Download the letter as a single-page PDF."""
        record = _finished_record(get_session(request, session_id))
        try:
            pdf = export_pdf(build_letter(record, date.today()))
        except ExportError as exc:
            raise HTTPException(status_code=500, detail=str(exc))
        return Response(
            content=pdf,
            media_type="application/pdf",
            headers={"Content-Disposition": content_disposition(pdf_filename(record.full_name))},
        )

    # -----------------------------------------------------------------------
    # Sidebar
    # -----------------------------------------------------------------------

    @app.get("/api/stats", response_model=StatsResponse)
    async def stats(request: Request) -> StatsResponse:
        live: Optional[LiveStats] = request.app.state.stats
        if live is None:
            return StatsResponse(
                total=0,
                target=settings.signature_target,
                percentage=0.0,
                loading=False,
                live=False,
            )
        return StatsResponse(
            total=live.total,
            target=live.target,
            percentage=live.percentage,
            loading=live.loading,
            live=live.active,
        )

    @app.get("/api/signers", response_model=list[SignerEntry])
    async def signers(request: Request) -> list[SignerEntry]:
        feed: Optional[RecentSigners] = request.app.state.signers
        if feed is None:
            return []
        return [
            SignerEntry(
                id=row.id,
                full_name=row.full_name,
                initial=row.full_name[:1].upper(),
                position=row.position,
                location=format_location(row),
                time_ago=format_relative_time(row.created_at),
            )
            for row in feed.signers
        ]

    @app.post("/api/suggestions", response_model=SuggestionResponse)
    async def suggest(request: Request, req: SuggestionRequest) -> SuggestionResponse:
        """Suggest a support statement for a position and location."""
        text = await request.app.state.suggester.suggest(req.position, req.location)
        return SuggestionResponse(text=text)

    return app
