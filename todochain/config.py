from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Agent Invocation Service
    agent_service_url: str = "http://localhost:3000"
    agent_invoke_path: str = "/api/chat/{plan_id}/execute-todo/{task_id}"
    agent_timeout_seconds: float = 300.0

    # Execution
    ordering_strategy: str = "topological"  # or "pairwise" for the legacy comparator
    abort_in_flight: bool = True

    # Plan store
    plan_store_backend: str = "json"  # "json" | "memory"
    plan_store_path: str = "./data/plans.json"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
