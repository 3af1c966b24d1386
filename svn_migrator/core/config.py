from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = "dev"
    app_name: str = "svn-gitlab-migrator"
    api_host: str = "0.0.0.0"
    api_port: int = 8080

    database_url: str
    redis_url: str

    gitlab_token: str | None = None
    gitlab_api_base: str = "https://gitlab.com/api/v4"
    gitlab_token_ttl: int = 86400

    git_repos_dir: str = "/data/git_repos"

    # git-svn supervision (seconds)
    gitsvn_output_warning: int = 300
    gitsvn_output_timeout: int = 600
    gitsvn_kill_timeout: int = 1800
    gitsvn_max_runtime: int = 7200
    gitsvn_monitor_interval: float = 30.0
    gitsvn_kill_grace: float = 5.0
    gitsvn_idle_cpu_percent: float = 1.0

    # batch windows (revisions)
    gitsvn_batch_size: int = 100
    gitsvn_min_batch_size: int = 1
    gitsvn_checkpoint_every: int = 20
    gitsvn_low_memory_mb: int = 500
    gitsvn_critical_memory_mb: int = 200
    gitsvn_log_window_size: int = 100
    gitsvn_stale_lock_seconds: int = 600

    shallow_revisions: int = 10
    sync_lookback_revisions: int = 100

    progress_min_delta: int = 1
    progress_publish_every: int = 5
    progress_speed_interval: float = 10.0

settings = Settings()
