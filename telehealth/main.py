import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from telehealth.core import config
from telehealth.database import Base, engine, ensure_scheduling_schema
from telehealth.models import appointment, doctor, payment, video_session  # noqa: F401
from telehealth.routes import payment_routes, scheduling_routes, session_routes
from telehealth.services.events import LoggingNotifier, connect_notifier, event_bus

logging.basicConfig(
    level=config.LOG_LEVEL,
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)
logger = logging.getLogger(__name__)

config.validate_runtime_config()

app = FastAPI(title='Telehealth Scheduling API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

connect_notifier(event_bus, LoggingNotifier())


@app.on_event('startup')
def initialize_database() -> None:
    try:
        Base.metadata.create_all(bind=engine)
        ensure_scheduling_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and Postgres credentials.')


@app.get('/')
def root():
    return {'status': 'Telehealth Scheduling API Running'}


app.include_router(scheduling_routes.router, prefix='/scheduling')
app.include_router(payment_routes.router, prefix='/payments')
app.include_router(session_routes.router, prefix='/sessions')
