from contextlib import asynccontextmanager

from fastapi import FastAPI

from property_chat.core.logging import configure_logging
from property_chat.database.connection import close_mongo_connection, connect_to_mongo, get_message_store
from property_chat.routers.chat import router as chat_router
from property_chat.routers.conversations import router as conversations_router


@asynccontextmanager
async def lifespan(app: FastAPI):

    configure_logging()
    await connect_to_mongo()
    try:
        yield
    finally:
        await close_mongo_connection()


app = FastAPI(title="Property chat", lifespan=lifespan)


app.include_router(chat_router)
app.include_router(conversations_router)


@app.get("/")
async def root():

    store = get_message_store()
    return {"message": "Property chat is running", "store": type(store).__name__}
