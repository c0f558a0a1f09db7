"""
Configuration management for the turn orchestrator and its external services.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


@dataclass
class StoreConfig:
    """Configuration for the keyed persistence backend."""
    backend: str  # 'memory' or 'dynamodb'
    namespace: str
    table_name: str
    region: str
    retry_attempts: int
    retry_delay: float


@dataclass
class ModelServiceConfig:
    """Configuration for the extraction/scoring service."""
    service_uri: str
    user: str
    secret: str
    timeout: float
    retry_attempts: int
    retry_delay: float


@dataclass
class RemoteFunctionConfig:
    """Configuration for remote function calls."""
    url: str
    key: str
    timeout: float


@dataclass
class OrchestratorConfig:
    """Configuration for turn handling."""
    default_app_id: str
    teach_cue_text: str


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
    store: StoreConfig
    model_service: ModelServiceConfig
    remote_functions: RemoteFunctionConfig
    orchestrator: OrchestratorConfig
    mcp: MCPConfig


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = os.getenv('ENVIRONMENT', 'development')

    # Keyed store configuration
    store_config = StoreConfig(backend=os.getenv('STORE_BACKEND', 'memory').lower(),
                               namespace=os.getenv('STORE_NAMESPACE', 'teachbot'),
                               table_name=os.getenv('STORE_DYNAMODB_TABLE', 'teachbot_state'),
                               region=os.getenv('STORE_AWS_REGION', 'us-east-1'),
                               retry_attempts=int(os.getenv('STORE_RETRY_ATTEMPTS', '3')),
                               retry_delay=float(os.getenv('STORE_RETRY_DELAY', '0.5')))

    # Extraction/scoring service configuration
    model_service_config = ModelServiceConfig(service_uri=os.getenv('MODEL_SERVICE_URI', 'http://localhost:5000/'),
                                              user=os.getenv('MODEL_SERVICE_USER', ''),
                                              secret=os.getenv('MODEL_SERVICE_SECRET', ''),
                                              timeout=float(os.getenv('MODEL_SERVICE_TIMEOUT', '30.0')),
                                              retry_attempts=int(os.getenv('MODEL_SERVICE_RETRY_ATTEMPTS', '3')),
                                              retry_delay=float(os.getenv('MODEL_SERVICE_RETRY_DELAY', '1.0')))

    # Remote function configuration
    remote_function_config = RemoteFunctionConfig(url=os.getenv('REMOTE_FUNCTIONS_URL', ''),
                                                  key=os.getenv('REMOTE_FUNCTIONS_KEY', ''),
                                                  timeout=float(os.getenv('REMOTE_FUNCTIONS_TIMEOUT', '30.0')))

    # Orchestrator configuration
    orchestrator_config = OrchestratorConfig(default_app_id=os.getenv('DEFAULT_APP_ID', ''),
                                             teach_cue_text=os.getenv('TEACH_CUE_TEXT', 'Input next user input'))

    # MCP configuration
    mcp_config = MCPConfig(transport=os.getenv('MCP_TRANSPORT', 'sse'),
                           host=os.getenv('MCP_HOST', '127.0.0.1'),
                           port=int(os.getenv('MCP_PORT', '8000')))

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     store=store_config,
                     model_service=model_service_config,
                     remote_functions=remote_function_config,
                     orchestrator=orchestrator_config,
                     mcp=mcp_config)


# Global configuration instance
config = load_config()
