import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from agenda.core import config
from agenda.database import create_db_engine, create_session_factory, ensure_scheduling_schema
from agenda.routes import appointment_routes, availability_routes
from agenda.services.calendar_sync import build_calendar_sync
from agenda.services.dispatch import BackgroundDispatcher
from agenda.services.scheduling_service import SchedulingService

app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


@app.on_event('startup')
def initialize_scheduling() -> None:
    logging.basicConfig(level=config.LOG_LEVEL)
    config.validate_runtime_config()

    engine = create_db_engine()
    session_factory = create_session_factory(engine)
    dispatcher = BackgroundDispatcher(max_workers=config.SIDE_EFFECT_WORKERS)

    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.dispatcher = dispatcher
    app.state.scheduling_service = SchedulingService(
        session_factory,
        calendar_sync=build_calendar_sync(),
        dispatcher=dispatcher,
    )

    try:
        ensure_scheduling_schema(engine)
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.on_event('shutdown')
def stop_side_effects() -> None:
    dispatcher = getattr(app.state, 'dispatcher', None)
    if dispatcher is not None:
        dispatcher.shutdown(wait=True)


@app.get('/')
def root():
    return {'status': 'Scheduling API Running'}


app.include_router(availability_routes.router, prefix='/availability')
app.include_router(appointment_routes.router, prefix='/appointments')
