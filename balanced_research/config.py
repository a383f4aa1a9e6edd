from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # AI search (Perplexity)
    perplexity_api_key: str = ""
    perplexity_base_url: str = "https://api.perplexity.ai"
    perplexity_model: str = "sonar-pro"
    perplexity_max_results: int = 10
    perplexity_fallback_temperature: float = 0.1
    perplexity_fallback_max_tokens: int = 2000

    # Web search (Serper)
    serper_api_key: str = ""
    serper_search_url: str = "https://google.serper.dev/search"
    serper_country: str = "us"
    serper_language: str = "en"
    serper_num_results: int = 10

    # Synthesis (OpenAI-compatible chat completions)
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    synthesis_model: str = "gpt-4o"
    synthesis_temperature: float = 0.1
    synthesis_max_tokens: int = 1500

    # Aggregation
    search_timeout_seconds: float = 30.0
    max_results_per_source: int = 10
    custom_url_max_parallel: int = 8
    balance_tolerance_pct: int = 10

    # Content extraction
    extractor_timeout_seconds: float = 15.0
    extractor_max_response_bytes: int = 10 * 1024 * 1024
    extractor_max_content_chars: int = 15000
    extractor_use_readability: bool = True
    extract_in_thread: bool = True

    # App
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"
    log_dir: str = "logs"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


settings = Settings()
