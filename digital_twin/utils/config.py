"""
Configuration management for the companion services and application settings.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import List

from dotenv import load_dotenv

load_dotenv()

REQUIRED_ENV_VARS = ('OPENAI_API_KEY', 'SUPABASE_URL', 'SUPABASE_ANON_KEY')


class ConfigurationError(Exception):
    """Raised when required configuration values are missing."""

    def __init__(self, missing: List[str]):
        self.missing = list(missing)
        super().__init__(f'Missing required environment variable(s): {", ".join(self.missing)}')


@dataclass
class OpenAIConfig:
    """Configuration for the chat completion endpoint."""
    api_key: str
    model: str
    completions_url: str
    temperature: float
    max_tokens: int


@dataclass
class BedrockLLMConfig:
    """Configuration for Amazon Bedrock LLM service."""
    region: str
    model_id: str
    max_tokens: int
    temperature: float
    retry_attempts: int
    retry_delay: float


@dataclass
class BackendConfig:
    """Configuration for the hosted backend (auth, tables, realtime)."""
    url: str
    anon_key: str


@dataclass
class ApiConfig:
    """Configuration for the application API client."""
    base_url: str
    timeout: float
    max_retries: int
    backoff_base: float
    refresh_path: str


@dataclass
class StorageConfig:
    """Configuration for secure local storage."""
    data_dir: Path
    key_path: Path
    secure_store_path: Path


@dataclass
class MCPConfig:
    """Configuration for MCP interface."""
    transport: str
    host: str
    port: int


@dataclass
class AppConfig:
    """Main application configuration."""
    environment: str
    log_level: str
    llm_provider: str
    default_user_id: str
    openai: OpenAIConfig
    bedrock_llm: BedrockLLMConfig
    backend: BackendConfig
    api: ApiConfig
    storage: StorageConfig
    mcp: MCPConfig

    def is_development(self) -> bool:
        return self.environment == 'development'

    def is_production(self) -> bool:
        return self.environment == 'production'


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = os.getenv('APP_ENV', 'development')

    openai_config = OpenAIConfig(api_key=os.getenv('OPENAI_API_KEY', ''),
                                 model=os.getenv('OPENAI_MODEL', 'gpt-4'),
                                 completions_url=os.getenv('OPENAI_COMPLETIONS_URL',
                                                           'https://api.openai.com/v1/chat/completions'),
                                 temperature=float(os.getenv('OPENAI_TEMPERATURE', '0.7')),
                                 max_tokens=int(os.getenv('OPENAI_MAX_TOKENS', '1000')))

    bedrock_llm_config = BedrockLLMConfig(region=os.getenv('BEDROCK_LLM_AWS_REGION', 'us-east-1'),
                                          model_id=os.getenv('BEDROCK_LLM_MODEL_ID', 'anthropic.claude-3-sonnet-20240229-v1:0'),
                                          max_tokens=int(os.getenv('BEDROCK_LLM_MAX_TOKENS', '1000')),
                                          temperature=float(os.getenv('BEDROCK_LLM_TEMPERATURE', '0.7')),
                                          retry_attempts=int(os.getenv('BEDROCK_LLM_RETRY_ATTEMPTS', '3')),
                                          retry_delay=float(os.getenv('BEDROCK_LLM_RETRY_DELAY', '1.0')))

    backend_config = BackendConfig(url=os.getenv('SUPABASE_URL', ''), anon_key=os.getenv('SUPABASE_ANON_KEY', ''))

    api_config = ApiConfig(base_url=os.getenv('API_BASE_URL', 'https://api.yourdomain.com'),
                           timeout=float(os.getenv('API_TIMEOUT', '30')),
                           max_retries=int(os.getenv('API_MAX_RETRIES', '3')),
                           backoff_base=float(os.getenv('API_BACKOFF_BASE', '2.0')),
                           refresh_path=os.getenv('API_REFRESH_PATH', '/auth/refresh'))

    data_dir = Path(os.getenv('DIGITAL_TWIN_DATA_DIR', '~/.digital_twin')).expanduser()
    storage_config = StorageConfig(data_dir=data_dir,
                                   key_path=data_dir / '.key',
                                   secure_store_path=data_dir / 'secure_store.enc')

    mcp_config = MCPConfig(transport=os.getenv('MCP_TRANSPORT', 'sse'),
                           host=os.getenv('MCP_HOST', '127.0.0.1'),
                           port=int(os.getenv('MCP_PORT', '8000')))

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     llm_provider=os.getenv('LLM_PROVIDER', 'auto').lower(),
                     default_user_id=os.getenv('DIGITAL_TWIN_USER_ID', 'local-user'),
                     openai=openai_config,
                     bedrock_llm=bedrock_llm_config,
                     backend=backend_config,
                     api=api_config,
                     storage=storage_config,
                     mcp=mcp_config)


def validate_config(app_config: AppConfig) -> None:
    """Ensure every required environment variable has a value.

    Args:
        app_config: AppConfig instance to validate

    Raises:
        ConfigurationError: If one or more required variables are empty
    """
    values = {
        'OPENAI_API_KEY': app_config.openai.api_key,
        'SUPABASE_URL': app_config.backend.url,
        'SUPABASE_ANON_KEY': app_config.backend.anon_key,
    }
    missing = [name for name in REQUIRED_ENV_VARS if not values.get(name)]
    if missing:
        raise ConfigurationError(missing)


# Global configuration instance
config = load_config()
