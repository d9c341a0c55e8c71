# utils.py
import os

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./clinic.db")

SECRET_KEY = os.getenv("AUTH_SECRET_KEY", "changeme")
ALGORITHM = os.getenv("AUTH_ALGORITHM", "HS256")
AUDIENCE = os.getenv("AUTH_AUDIENCE", "clinic-users")
ISSUER = os.getenv("AUTH_ISSUER", "clinic-auth")
ACCESS_TOKEN_EXPIRE_HOURS = int(os.getenv("ACCESS_TOKEN_EXPIRE_HOURS", "24"))
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "10"))

APPOINTMENT_DURATION_MINUTES = int(os.getenv("APPOINTMENT_DURATION_MINUTES", "30"))

FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
DEBUG = ENVIRONMENT == "development"
