"""
Configuration management for the Patient Intake OCR application.
Loads OCR provider, storage and AWS settings from environment variables.
"""
import os
from typing import Optional
from dotenv import load_dotenv

# Load environment variables from .env file if it exists
load_dotenv()


class Config:
    """Configuration class for recognition, storage and API settings."""

    # Document recognition
    RECOGNITION_PROVIDER: str = os.getenv('RECOGNITION_PROVIDER', 'mock').lower()
    MISTRAL_API_KEY: Optional[str] = os.getenv('MISTRAL_API_KEY')
    MISTRAL_OCR_ENDPOINT: str = os.getenv('MISTRAL_OCR_ENDPOINT', 'https://api.mistral.ai/v1/ocr')
    RECOGNITION_TIMEOUT: float = float(os.getenv('RECOGNITION_TIMEOUT', '30'))
    MOCK_RECOGNITION_DELAY: float = float(os.getenv('MOCK_RECOGNITION_DELAY', '1.0'))

    # Upload policy (applied by the HTTP layer, not the recognition client)
    MAX_UPLOAD_BYTES: int = int(os.getenv('MAX_UPLOAD_BYTES', str(10 * 1024 * 1024)))
    ALLOWED_UPLOAD_EXTENSIONS: list = [
        ext.strip().lower()
        for ext in os.getenv('ALLOWED_UPLOAD_EXTENSIONS', '.pdf,.jpg,.jpeg,.png').split(',')
        if ext.strip()
    ]

    # Storage
    STORAGE_BACKEND: str = os.getenv('STORAGE_BACKEND', 'memory').lower()
    PATIENT_FORMS_TABLE: str = os.getenv('PATIENT_FORMS_TABLE', 'PatientForm')
    TODOS_TABLE: str = os.getenv('TODOS_TABLE', 'Todo')

    # AWS Credentials (DynamoDB storage backend)
    AWS_PROFILE: Optional[str] = os.getenv('AWS_PROFILE')
    AWS_ACCESS_KEY_ID: Optional[str] = os.getenv('AWS_ACCESS_KEY_ID')
    AWS_SECRET_ACCESS_KEY: Optional[str] = os.getenv('AWS_SECRET_ACCESS_KEY')
    AWS_SESSION_TOKEN: Optional[str] = os.getenv('AWS_SESSION_TOKEN')
    AWS_REGION: str = os.getenv('AWS_REGION', 'us-east-1')

    # Rate Limiting (OCR provider calls)
    MAX_TOTAL_CALLS: int = int(os.getenv('MAX_TOTAL_CALLS', '50'))
    ENABLE_RATE_LIMITING: bool = os.getenv('ENABLE_RATE_LIMITING', 'true').lower() == 'true'

    # API Settings
    API_HOST: str = os.getenv('API_HOST', '0.0.0.0')
    API_PORT: int = int(os.getenv('API_PORT', '8000'))
    CORS_ORIGINS: list = os.getenv('CORS_ORIGINS', 'http://localhost:3000').split(',')
    LOG_LEVEL: str = os.getenv('LOG_LEVEL', 'INFO')

    # Form sessions (in memory, least recently used dropped first)
    MAX_OPEN_SESSIONS: int = int(os.getenv('MAX_OPEN_SESSIONS', '100'))

    @classmethod
    def validate(cls) -> bool:
        """
        Validate that required configuration is present.
        """
        if cls.RECOGNITION_PROVIDER not in ('mock', 'mistral'):
            raise ValueError(
                f"Unknown RECOGNITION_PROVIDER '{cls.RECOGNITION_PROVIDER}'. Use 'mock' or 'mistral'."
            )

        if cls.RECOGNITION_PROVIDER == 'mistral' and not cls.MISTRAL_API_KEY:
            raise ValueError("MISTRAL_API_KEY environment variable is required for the mistral provider.")

        if cls.MAX_OPEN_SESSIONS < 1:
            raise ValueError("MAX_OPEN_SESSIONS must be at least 1.")

        if cls.RECOGNITION_TIMEOUT <= 0:
            raise ValueError("RECOGNITION_TIMEOUT must be a positive number of seconds.")

        if cls.STORAGE_BACKEND not in ('memory', 'dynamodb'):
            raise ValueError(
                f"Unknown STORAGE_BACKEND '{cls.STORAGE_BACKEND}'. Use 'memory' or 'dynamodb'."
            )

        if cls.STORAGE_BACKEND == 'dynamodb':
            if not cls.AWS_PROFILE and (not cls.AWS_ACCESS_KEY_ID or not cls.AWS_SECRET_ACCESS_KEY):
                raise ValueError(
                    "AWS credentials not found. Please set either:\n"
                    "  - AWS_PROFILE environment variable (for profile-based auth), or\n"
                    "  - AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY environment variables"
                )

            # Check if temporary credentials (ASIA) are used without session token
            if cls.AWS_ACCESS_KEY_ID and cls.AWS_ACCESS_KEY_ID.startswith('ASIA'):
                if not cls.AWS_SESSION_TOKEN:
                    raise ValueError(
                        "Temporary credentials (ASIA) detected but AWS_SESSION_TOKEN is not set.\n"
                        "Temporary credentials require a session token to work."
                    )

            if not cls.AWS_REGION:
                raise ValueError("AWS_REGION environment variable is required.")
        return True

    @classmethod
    def get_boto3_config(cls) -> dict:
        """
        Get AWS configuration dictionary for boto3.
        """
        config = {'region_name': cls.AWS_REGION}

        if cls.AWS_PROFILE:
            return {'profile_name': cls.AWS_PROFILE, 'region_name': cls.AWS_REGION}
        elif cls.AWS_ACCESS_KEY_ID and cls.AWS_SECRET_ACCESS_KEY:
            config.update({
                'aws_access_key_id': cls.AWS_ACCESS_KEY_ID,
                'aws_secret_access_key': cls.AWS_SECRET_ACCESS_KEY
            })
            if cls.AWS_SESSION_TOKEN:
                config['aws_session_token'] = cls.AWS_SESSION_TOKEN

        return config
