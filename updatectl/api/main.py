from dotenv import load_dotenv
from fastapi import FastAPI

from updatectl.api.middleware import AuthMiddleware
from updatectl.api.routes import updates

load_dotenv()
app = FastAPI(title="updatectl")
app.add_middleware(AuthMiddleware)

app.include_router(updates.router)
