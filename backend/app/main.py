from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field

from kart_core import (
    ConstraintViolation,
    Driver,
    DriverLaps,
    DriverRoster,
    Lap,
    MultipleDriverEntry,
    MultipleLap,
    MultipleSession,
    RecordNotFound,
    Session,
    SessionStore,
    StorageError,
    TimingBoard,
    TimingSession,
    format_created_at,
    format_duration,
    is_fastest_lap,
)
from kart_core.stopwatch import DEFAULT_BOARD_SESSION_NAME, TickerFactory

logger = logging.getLogger(__name__)

router = APIRouter()


class LapModel(BaseModel):
    id: int
    lap_time: float = Field(alias="lapTime")
    lap_number: int = Field(alias="lapNumber")
    display: str
    is_fastest: bool = Field(alias="isFastest")

    model_config = ConfigDict(populate_by_name=True)


class SessionModel(BaseModel):
    id: int
    session_name: str = Field(alias="sessionName")
    driver_name: str = Field(alias="driverName")
    kart_number: str = Field(alias="kartNumber")
    weather: str
    created_at: str = Field(alias="createdAt")
    created_at_display: str = Field(alias="createdAtDisplay")
    lap_count: int = Field(alias="lapCount")
    best_lap_time: Optional[float] = Field(default=None, alias="bestLapTime")
    laps: List[LapModel]

    model_config = ConfigDict(populate_by_name=True)


class SessionListResponse(BaseModel):
    sessions: List[SessionModel]


class SessionCreatePayload(BaseModel):
    session_name: str = Field(alias="sessionName")
    driver_name: str = Field(alias="driverName")
    kart_number: str = Field(default="", alias="kartNumber")
    weather: str = "dry"
    laps: List[float] = Field(default_factory=list, description="Lap times in seconds, in recording order")

    model_config = ConfigDict(populate_by_name=True)


class MultipleDriverModel(BaseModel):
    id: int
    driver_name: str = Field(alias="driverName")
    kart_number: str = Field(alias="kartNumber")
    lap_count: int = Field(alias="lapCount")
    best_lap_time: Optional[float] = Field(default=None, alias="bestLapTime")
    laps: List[LapModel]

    model_config = ConfigDict(populate_by_name=True)


class MultipleSessionModel(BaseModel):
    id: int
    session_name: str = Field(alias="sessionName")
    created_at: str = Field(alias="createdAt")
    created_at_display: str = Field(alias="createdAtDisplay")
    drivers: List[MultipleDriverModel]

    model_config = ConfigDict(populate_by_name=True)


class MultipleSessionListResponse(BaseModel):
    sessions: List[MultipleSessionModel]


class MultipleDriverPayload(BaseModel):
    driver_name: str = Field(alias="driverName")
    kart_number: str = Field(default="", alias="kartNumber")
    laps: List[float] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


class MultipleSessionCreatePayload(BaseModel):
    session_name: str = Field(default=DEFAULT_BOARD_SESSION_NAME, alias="sessionName")
    drivers: List[MultipleDriverPayload] = Field(min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class DriverRemovalResponse(BaseModel):
    session_removed: bool = Field(alias="sessionRemoved")

    model_config = ConfigDict(populate_by_name=True)


class DeleteCountResponse(BaseModel):
    deleted: int


class DriverModel(BaseModel):
    id: str
    name: str
    kart_number: str = Field(alias="kartNumber")

    model_config = ConfigDict(populate_by_name=True)


class DriverListResponse(BaseModel):
    drivers: List[DriverModel]
    can_add: bool = Field(alias="canAdd")

    model_config = ConfigDict(populate_by_name=True)


class DriverPayload(BaseModel):
    name: str
    kart_number: str = Field(default="", alias="kartNumber")

    model_config = ConfigDict(populate_by_name=True)


class TimerConfigPayload(BaseModel):
    session_name: Optional[str] = Field(default=None, alias="sessionName")
    driver_id: Optional[str] = Field(default=None, alias="driverId")
    weather: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class TimerStateModel(BaseModel):
    session_name: str = Field(alias="sessionName")
    driver_name: Optional[str] = Field(default=None, alias="driverName")
    kart_number: str = Field(alias="kartNumber")
    weather: str
    is_running: bool = Field(alias="isRunning")
    elapsed: float
    elapsed_display: str = Field(alias="elapsedDisplay")
    laps: List[float]

    model_config = ConfigDict(populate_by_name=True)


class BoardSlotPayload(BaseModel):
    name: Optional[str] = None
    kart_number: Optional[str] = Field(default=None, alias="kartNumber")
    driver_id: Optional[str] = Field(default=None, alias="driverId")

    model_config = ConfigDict(populate_by_name=True)


class BoardSlotModel(BaseModel):
    slot: int
    name: str
    kart_number: str = Field(alias="kartNumber")
    is_running: bool = Field(alias="isRunning")
    elapsed: float
    elapsed_display: str = Field(alias="elapsedDisplay")
    last_lap_display: str = Field(alias="lastLapDisplay")
    laps: List[float]

    model_config = ConfigDict(populate_by_name=True)


class BoardResponse(BaseModel):
    slots: List[BoardSlotModel]


class BoardSavePayload(BaseModel):
    session_name: str = Field(default=DEFAULT_BOARD_SESSION_NAME, alias="sessionName")

    model_config = ConfigDict(populate_by_name=True)


class SaveResponse(BaseModel):
    id: Optional[int] = None


def _lap_model(lap: Lap | MultipleLap, laps: List) -> LapModel:
    return LapModel(
        id=lap.id,
        lap_time=lap.lap_time,
        lap_number=lap.lap_number,
        display=format_duration(lap.lap_time),
        is_fastest=is_fastest_lap(lap, laps),
    )


def _session_model(session: Session) -> SessionModel:
    return SessionModel(
        id=session.id,
        session_name=session.session_name,
        driver_name=session.driver_name,
        kart_number=session.kart_number,
        weather=session.weather.label.lower(),
        created_at=session.created_at,
        created_at_display=format_created_at(session.created_at),
        lap_count=session.lap_count,
        best_lap_time=session.best_lap_time,
        laps=[_lap_model(lap, session.laps) for lap in session.laps],
    )


def _multiple_driver_model(driver: MultipleDriverEntry) -> MultipleDriverModel:
    return MultipleDriverModel(
        id=driver.id,
        driver_name=driver.driver_name,
        kart_number=driver.kart_number,
        lap_count=driver.lap_count,
        best_lap_time=driver.best_lap_time,
        laps=[_lap_model(lap, driver.laps) for lap in driver.laps],
    )


def _multiple_session_model(session: MultipleSession) -> MultipleSessionModel:
    return MultipleSessionModel(
        id=session.id,
        session_name=session.session_name,
        created_at=session.created_at,
        created_at_display=format_created_at(session.created_at),
        drivers=[_multiple_driver_model(driver) for driver in session.drivers],
    )


def _driver_model(driver: Driver) -> DriverModel:
    return DriverModel(id=driver.id, name=driver.name, kart_number=driver.kart_number)


def _timer_model(timing: TimingSession) -> TimerStateModel:
    state = timing.snapshot()
    return TimerStateModel(
        session_name=state["sessionName"],
        driver_name=state["driverName"],
        kart_number=state["kartNumber"],
        weather=state["weather"],
        is_running=state["isRunning"],
        elapsed=state["elapsed"],
        elapsed_display=format_duration(state["elapsed"]),
        laps=state["laps"],
    )


def _board_model(board: TimingBoard) -> BoardResponse:
    slots = []
    for state in board.snapshot():
        laps = state["laps"]
        slots.append(
            BoardSlotModel(
                slot=state["slot"],
                name=state["name"],
                kart_number=state["kartNumber"],
                is_running=state["isRunning"],
                elapsed=state["elapsed"],
                elapsed_display=format_duration(state["elapsed"]),
                last_lap_display=format_duration(laps[-1]) if laps else "---",
                laps=laps,
            )
        )
    return BoardResponse(slots=slots)


def session_store(request: Request) -> SessionStore:
    return request.app.state.sessions


def driver_roster(request: Request) -> DriverRoster:
    return request.app.state.drivers


def timing_session(request: Request) -> TimingSession:
    return request.app.state.timing


def timing_board(request: Request) -> TimingBoard:
    return request.app.state.board


def _require_driver(roster: DriverRoster, driver_id: str) -> Driver:
    driver = roster.get_driver(driver_id)
    if driver is None:
        raise HTTPException(status_code=404, detail="Driver not found")
    return driver


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


# ---------------------------------------------------------------- drivers


@router.get("/drivers", response_model=DriverListResponse)
def list_drivers(roster: DriverRoster = Depends(driver_roster)):
    return DriverListResponse(
        drivers=[_driver_model(driver) for driver in roster.list_drivers()],
        can_add=roster.can_add_driver(),
    )


@router.post("/drivers", response_model=DriverModel, status_code=201)
def add_driver(payload: DriverPayload, roster: DriverRoster = Depends(driver_roster)):
    try:
        driver = roster.add_driver(payload.name, payload.kart_number)
    except ConstraintViolation as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except StorageError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    if driver is None:
        raise HTTPException(status_code=409, detail="Driver limit reached")
    return _driver_model(driver)


@router.patch("/drivers/{driver_id}", response_model=DriverModel)
def update_driver(driver_id: str, payload: DriverPayload, roster: DriverRoster = Depends(driver_roster)):
    try:
        driver = roster.update_driver(driver_id, payload.name, payload.kart_number)
    except ConstraintViolation as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except StorageError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    if driver is None:
        raise HTTPException(status_code=404, detail="Driver not found")
    return _driver_model(driver)


@router.delete("/drivers/{driver_id}", status_code=204)
def delete_driver(driver_id: str, roster: DriverRoster = Depends(driver_roster)):
    try:
        deleted = roster.delete_driver(driver_id)
    except StorageError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    if not deleted:
        raise HTTPException(status_code=404, detail="Driver not found")


# --------------------------------------------------------- single sessions


@router.get("/sessions", response_model=SessionListResponse)
def list_sessions(store: SessionStore = Depends(session_store)):
    try:
        sessions = store.list_sessions()
    except StorageError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return SessionListResponse(sessions=[_session_model(session) for session in sessions])


@router.post("/sessions", response_model=SessionModel, status_code=201)
def create_session(payload: SessionCreatePayload, store: SessionStore = Depends(session_store)):
    try:
        session_id = store.create_session(
            session_name=payload.session_name,
            driver_name=payload.driver_name,
            kart_number=payload.kart_number,
            weather=payload.weather,
            lap_times=payload.laps,
        )
        session = store.get_session(session_id)
    except ConstraintViolation as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except StorageError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return _session_model(session)


@router.get("/sessions/{session_id}", response_model=SessionModel)
def get_session(session_id: int, store: SessionStore = Depends(session_store)):
    try:
        session = store.get_session(session_id)
    except RecordNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except StorageError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return _session_model(session)


@router.delete("/sessions/{session_id}", status_code=204)
def delete_session(session_id: int, store: SessionStore = Depends(session_store)):
    try:
        deleted = store.delete_session(session_id)
    except StorageError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    if not deleted:
        raise HTTPException(status_code=404, detail="Session not found")


# ------------------------------------------------------- multiple sessions


@router.get("/multiple-sessions", response_model=MultipleSessionListResponse)
def list_multiple_sessions(store: SessionStore = Depends(session_store)):
    try:
        sessions = store.list_multiple_sessions()
    except StorageError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return MultipleSessionListResponse(sessions=[_multiple_session_model(session) for session in sessions])


@router.post("/multiple-sessions", response_model=MultipleSessionModel, status_code=201)
def create_multiple_session(payload: MultipleSessionCreatePayload, store: SessionStore = Depends(session_store)):
    drivers = [
        DriverLaps(driver_name=item.driver_name, kart_number=item.kart_number, lap_times=item.laps)
        for item in payload.drivers
    ]
    try:
        session_id = store.create_multiple_session(payload.session_name, drivers)
        session = store.get_multiple_session(session_id)
    except ConstraintViolation as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except StorageError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return _multiple_session_model(session)


@router.delete("/multiple-sessions", response_model=DeleteCountResponse)
def delete_all_multiple_sessions(store: SessionStore = Depends(session_store)):
    try:
        deleted = store.delete_all_multiple_sessions()
    except StorageError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return DeleteCountResponse(deleted=deleted)


@router.delete("/multiple-sessions/{session_id}", status_code=204)
def delete_multiple_session(session_id: int, store: SessionStore = Depends(session_store)):
    try:
        deleted = store.delete_multiple_session(session_id)
    except StorageError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    if not deleted:
        raise HTTPException(status_code=404, detail="Multiple session not found")


@router.delete("/multiple-sessions/{session_id}/drivers/{driver_id}", response_model=DriverRemovalResponse)
def delete_multiple_driver(session_id: int, driver_id: int, store: SessionStore = Depends(session_store)):
    try:
        session_removed = store.delete_multiple_driver(session_id, driver_id)
    except RecordNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except StorageError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return DriverRemovalResponse(session_removed=session_removed)


# ------------------------------------------------------------ single timer


@router.get("/timer", response_model=TimerStateModel)
def timer_state(timing: TimingSession = Depends(timing_session)):
    return _timer_model(timing)


@router.put("/timer", response_model=TimerStateModel)
def configure_timer(
    payload: TimerConfigPayload,
    timing: TimingSession = Depends(timing_session),
    roster: DriverRoster = Depends(driver_roster),
):
    driver_name = kart_number = None
    if payload.driver_id is not None:
        driver = _require_driver(roster, payload.driver_id)
        driver_name, kart_number = driver.name, driver.kart_number
    try:
        timing.configure(
            session_name=payload.session_name,
            driver_name=driver_name,
            kart_number=kart_number,
            weather=payload.weather,
        )
    except ConstraintViolation as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _timer_model(timing)


@router.post("/timer/start", response_model=TimerStateModel)
def start_timer(timing: TimingSession = Depends(timing_session)):
    try:
        timing.start_timer()
    except ConstraintViolation as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _timer_model(timing)


@router.post("/timer/lap", response_model=TimerStateModel)
def record_lap(timing: TimingSession = Depends(timing_session)):
    timing.record_lap()
    return _timer_model(timing)


@router.post("/timer/stop", response_model=TimerStateModel)
def stop_timer(timing: TimingSession = Depends(timing_session)):
    timing.stop_timer()
    return _timer_model(timing)


@router.post("/timer/reset", response_model=TimerStateModel)
def reset_timer(timing: TimingSession = Depends(timing_session)):
    timing.reset()
    return _timer_model(timing)


@router.post("/timer/save", response_model=SaveResponse, status_code=201)
def save_timer(timing: TimingSession = Depends(timing_session), store: SessionStore = Depends(session_store)):
    try:
        session_id = timing.save(store)
    except ConstraintViolation as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except StorageError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return SaveResponse(id=session_id)


# ------------------------------------------------------------- kart board


@router.get("/board", response_model=BoardResponse)
def board_state(board: TimingBoard = Depends(timing_board)):
    return _board_model(board)


@router.put("/board/{slot}", response_model=BoardResponse)
def configure_board_slot(
    slot: int,
    payload: BoardSlotPayload,
    board: TimingBoard = Depends(timing_board),
    roster: DriverRoster = Depends(driver_roster),
):
    name, kart_number = payload.name, payload.kart_number
    if payload.driver_id is not None:
        driver = _require_driver(roster, payload.driver_id)
        name, kart_number = driver.name, driver.kart_number
    try:
        board.configure(slot, name=name, kart_number=kart_number)
    except ConstraintViolation as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _board_model(board)


@router.post("/board/{slot}/toggle", response_model=BoardResponse)
def toggle_board_slot(slot: int, board: TimingBoard = Depends(timing_board)):
    try:
        board.toggle(slot)
    except ConstraintViolation as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _board_model(board)


@router.post("/board/{slot}/lap", response_model=BoardResponse)
def board_lap(slot: int, board: TimingBoard = Depends(timing_board)):
    try:
        board.lap(slot)
    except ConstraintViolation as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _board_model(board)


@router.post("/board/stop-all", response_model=BoardResponse)
def stop_board(board: TimingBoard = Depends(timing_board)):
    board.stop_all()
    return _board_model(board)


@router.post("/board/save", response_model=SaveResponse)
def save_board(
    payload: BoardSavePayload | None = None,
    board: TimingBoard = Depends(timing_board),
    store: SessionStore = Depends(session_store),
):
    session_name = payload.session_name if payload else DEFAULT_BOARD_SESSION_NAME
    try:
        session_id = board.save(store, session_name=session_name)
    except ConstraintViolation as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except StorageError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return SaveResponse(id=session_id)


def create_app(data_dir: Path | None = None, ticker_factory: TickerFactory | None = None) -> FastAPI:
    """Build the API. The lifespan handler owns the stores and timer state."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.sessions = SessionStore(data_dir=data_dir)
        app.state.drivers = DriverRoster(data_dir=data_dir)
        app.state.timing = TimingSession(ticker_factory=ticker_factory)
        app.state.board = TimingBoard(ticker_factory=ticker_factory)
        logger.info("Session store ready at %s", app.state.sessions.db_path)
        try:
            yield
        finally:
            app.state.timing.stop_timer()
            app.state.board.stop_all()
            app.state.sessions.close()

    application = FastAPI(title="KartTimer API", version="1.0.0", lifespan=lifespan)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.include_router(router)
    return application


app = create_app()
