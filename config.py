import os

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")
SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-change-me")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Opaque identity provider: a single owner account until real auth lands.
APP_USERNAME = os.getenv("APP_USERNAME", "admin")
APP_PASSWORD = os.getenv("APP_PASSWORD", "password")
APP_USER_ID = int(os.getenv("APP_USER_ID", "1"))

CURRENCY = os.getenv("CURRENCY", "LKR")

COMPANY_NAME = os.getenv("COMPANY_NAME", "MN Electronics")
COMPANY_ADDRESS = os.getenv("COMPANY_ADDRESS", "1B, Jayathilaka Road, Panadura.")
COMPANY_PHONE = os.getenv("COMPANY_PHONE", "0712302138")
COMPANY_WEBSITE = os.getenv("COMPANY_WEBSITE", "www.mnelectronics.com")

REPORTS_API_URL = os.getenv("REPORTS_API_URL", "http://localhost:5000")
