import os
import secrets
from dotenv import load_dotenv

# Load environment variables from .env file(s)
# 1) Project root .env
load_dotenv()

basedir = os.path.abspath(os.path.dirname(__file__))

# 2) Overlay data/.env so settings saved at runtime persist via the mounted volume
data_env_path = os.path.join(basedir, 'data', '.env')
if os.path.exists(data_env_path):
    load_dotenv(dotenv_path=data_env_path, override=True)


def _env_int(name, default):
    try:
        return int(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


def _env_float(name, default):
    try:
        return float(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


class Config:
    # Security
    SECRET_KEY = os.environ.get('SECRET_KEY')
    if not SECRET_KEY:
        if os.environ.get('FLASK_ENV') == 'development' or os.environ.get('FLASK_DEBUG'):
            SECRET_KEY = secrets.token_hex(32)
            print("⚠️  WARNING: Using temporary SECRET_KEY for development. Set SECRET_KEY in .env for production!")
        else:
            # All workers must share one key
            raise ValueError("No SECRET_KEY set for Flask application. Please set it in your .env file.")

    # API Authentication: comma separated token:user_id pairs
    API_TOKENS = os.environ.get('API_TOKENS', '')

    # Uploads
    MAX_IMPORT_FILE_SIZE = _env_int('MAX_IMPORT_FILE_SIZE', 10 * 1024 * 1024)  # 10MB
    # Leaves room for multipart overhead so oversize CSVs get the importer's 400
    MAX_CONTENT_LENGTH = _env_int('MAX_CONTENT_LENGTH', MAX_IMPORT_FILE_SIZE + 1024 * 1024)

    # Import settings
    IMPORT_HISTORY_LIMIT = _env_int('IMPORT_HISTORY_LIMIT', 10)
    IMPORT_SOURCE_TAG = os.environ.get('IMPORT_SOURCE_TAG', 'goodreads-csv')

    # External metadata lookups
    ENRICHMENT_TIMEOUT = _env_float('ENRICHMENT_TIMEOUT', 10.0)
    ENRICHMENT_FAST_TIMEOUT = _env_float('ENRICHMENT_FAST_TIMEOUT', 3.0)
    ENRICHMENT_MAX_RETRIES = _env_int('ENRICHMENT_MAX_RETRIES', 3)

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'ERROR')
