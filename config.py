from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    # --- Server ---
    port: int = 8080
    workers: int = 4

    # --- File Limits ---
    max_file_size_mb: int = 32
    max_file_size_bytes: int = 0  # Computed in model_post_init

    # --- Engine Selection ---
    default_backend: str = "image_magick"  # "image_magick" or "vips"
    use_exif_orientation: bool = True

    # --- External Tools ---
    imagemagick_path: str = ""  # Extra PATH entries searched for magick/convert/identify
    tool_timeout_seconds: int = 60

    # --- Output ---
    temp_dir: str = ""  # Empty = system temp directory

    # --- Logging ---
    log_level: str = "ERROR"

    model_config = {"env_prefix": "", "case_sensitive": False}

    def model_post_init(self, __context) -> None:
        if self.max_file_size_bytes == 0:
            self.max_file_size_bytes = self.max_file_size_mb * 1024 * 1024


settings = Settings()
