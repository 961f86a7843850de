from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.config import settings
from app.database import init_db
from app.routers import deals, metadata, line, ledger, reminders, myosoku
from app.services.reminder_service import ReminderScheduler, get_reminder_service
import logging

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Leasing Kanban API",
    description="API for tracking rental deals through phases with LINE, ledger and Slack integrations",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(metadata.router)
app.include_router(deals.router)
app.include_router(line.router)
app.include_router(ledger.router)
app.include_router(reminders.router)
app.include_router(myosoku.router)

reminder_scheduler = ReminderScheduler(get_reminder_service())


@app.on_event("startup")
async def startup_event():
    logger.info("Starting up Leasing Kanban API")
    init_db()
    logger.info("Database initialized")

    if settings.REMINDER_SCHEDULER_ENABLED:
        reminder_scheduler.start()
    else:
        logger.info("Reminder scheduler disabled")


@app.on_event("shutdown")
async def shutdown_event():
    reminder_scheduler.shutdown()


@app.get("/")
async def root():
    return {
        "message": "Leasing Kanban API",
        "version": "1.0.0",
        "endpoints": {
            "metadata": "GET /api/metadata",
            "deals": "GET/POST /api/deals",
            "deal": "GET/PATCH/DELETE /api/deals/{deal_id}",
            "line_send": "POST /api/line/send",
            "line_webhook": "POST /api/line/webhook",
            "ledger_sync": "POST /api/ledger/sync",
            "reminders": "POST /api/reminders/check",
            "myosoku": "POST /api/myosoku/analyze"
        }
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
