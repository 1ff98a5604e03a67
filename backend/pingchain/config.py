import os
from dotenv import load_dotenv

load_dotenv()

# ------------------------
# MongoDB
# ------------------------

MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017/")  # local dev default
MONGO_DB_NAME = os.getenv("MONGO_DB_NAME", "pingchain")

# ------------------------
# Auth
# ------------------------

SECRET_KEY = os.getenv("JWT_SECRET", "supersecret")
ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# ------------------------
# Hosted models
# ------------------------

HUGGINGFACE_API_KEY = os.getenv("HUGGINGFACE_API_KEY", "hf_demo")
HUGGINGFACE_MODEL_URL = os.getenv(
    "HUGGINGFACE_MODEL_URL",
    "https://api-inference.huggingface.co/models/microsoft/DialoGPT-medium",
)
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "30"))

# ------------------------
# App
# ------------------------

APP_URL = os.getenv("APP_URL", "http://localhost:3000")
ALLOWED_ORIGINS = [o.strip() for o in os.getenv("ALLOWED_ORIGINS", "*").split(",") if o.strip()]
