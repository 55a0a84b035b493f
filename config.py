import os

# Sub-application base URLs
MAIN_APP_URL = os.getenv("MAIN_APP_URL", "https://aotf.in")
TUTORIALS_APP_URL = os.getenv("TUTORIALS_APP_URL", "https://tutorials.aotf.in")
JOBS_APP_URL = os.getenv("JOBS_APP_URL", "https://jobs.aotf.in")
ADMIN_APP_URL = os.getenv("ADMIN_APP_URL", "https://admin.aotf.in")

# Auth config (one secret per cookie domain, never shared)
ALGORITHM = "HS256"
TUTORIALS_AUTH_SECRET = os.getenv("TUTORIALS_AUTH_SECRET", "tutorials-secret-change-me")
JOBS_AUTH_SECRET = os.getenv("JOBS_AUTH_SECRET", "jobs-secret-change-me")
ADMIN_AUTH_SECRET = os.getenv("ADMIN_AUTH_SECRET", "admin-secret-change-me")
SESSION_MAX_AGE_SECONDS = int(os.getenv("SESSION_MAX_AGE_SECONDS", 60 * 60 * 24 * 7))  # 7 days
COOKIE_SECURE = os.getenv("COOKIE_SECURE", "false").lower() == "true"
GENERIC_COOKIE_NAME = "auth-token"

# Stripe
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
REGISTRATION_FEE_AMOUNT = int(os.getenv("REGISTRATION_FEE_AMOUNT", 49900))  # paise
CURRENCY = os.getenv("CURRENCY", "inr")

# Pagination
PAGE_DEFAULT = 1
LIMIT_DEFAULT = 10
LIMIT_MAX = 100

SETTINGS_KEY = "admin-settings"

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Invoice letterhead
COMPANY = {
    "name": os.getenv("COMPANY_NAME", "Academy of Tutorials & Freelancers"),
    "address": os.getenv(
        "COMPANY_ADDRESS",
        "11 No. Dulal Nagar, Belgharia, Kolkata, West Bengal 700056",
    ),
    "phone": os.getenv("COMPANY_PHONE", "+91 6290338214"),
}
WEBSITE_URL = MAIN_APP_URL
