"""Application constants and settlement policy values."""

from datetime import time
from decimal import Decimal

from core.config import FRONTEND_URL

# Database field lengths
MAX_STRING_LENGTH = 255

# Database connection settings
DB_POOL_RECYCLE_SECONDS = 300  # 5 minutes

# CORS origins for development and production
# Note: production URLs should be added via FRONTEND_URL environment variable
_CORS_ORIGINS_RAW = [
    "http://localhost:5173",      # React dev server (Vite) - localhost
    "http://localhost:3000",      # Next.js dev server
    FRONTEND_URL,
]

# Filter out None values and empty strings to avoid CORS errors
CORS_ORIGINS = [origin for origin in _CORS_ORIGINS_RAW if origin and origin.strip()]

# Self-pay ("particulares") spellings. Both are interchangeable for rate lookups.
SELF_PAY_PAYER = "042 - PARTICULARES"
SELF_PAY_ALIASES = (SELF_PAY_PAYER, "PARTICULARES")
NO_COVERAGE_MARKER = "SIN COBERTURA"

# Consult-type tags used to select the payer rate table of each specialty
CONSULT_TYPE_PEDIATRICS = "CONSULTA PEDIATRICA Y NEONATAL"
CONSULT_TYPE_GYNECOLOGY = "CONSULTA GINECOLOGICA"
CONSULT_TYPE_CLINICAL_SHIFTS = "CONSULTA CLINICA"

# Retention percentages
PEDIATRICS_RETENTION_PERCENT = Decimal("30")
GYNECOLOGY_RETENTION_PERCENT = Decimal("20")  # applied per doctor at aggregation

# Clinical-shift tiers: share of the gross consultation total paid to the doctor
TIER_A = "TIER_A"
TIER_B = "TIER_B"
TIER_SHARE_PERCENT = {
    TIER_A: Decimal("70"),
    TIER_B: Decimal("40"),
}

# Flat fee per clinical admission of record
ADMISSION_FLAT_FEE = Decimal("10000")

# Training-hours window for residents: Monday-Saturday, start inclusive, end exclusive
TRAINING_WINDOW_START = time(7, 0)
TRAINING_WINDOW_END = time(15, 0)
TRAINING_WINDOW_WEEKDAYS = frozenset(range(0, 6))  # date.weekday(): Monday=0 .. Saturday=5

# Accepted visit years; anything outside is treated as an invalid date
MIN_VALID_YEAR = 2020
MAX_VALID_YEAR = 2100

# Excel serial dates count days from this epoch (includes the 1900 leap-year bug)
EXCEL_EPOCH_YEAR, EXCEL_EPOCH_MONTH, EXCEL_EPOCH_DAY = 1899, 12, 30

# Rounding unit for proportional (divided) amounts
MONEY_QUANTUM = Decimal("0.01")
