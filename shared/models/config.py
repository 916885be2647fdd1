from pydantic import BaseModel

from shared.helper.HelperConfig import HelperConfig


class EnvConfig(BaseModel):
    """
    Represents a single configuration parameter required for a env setting.

    Attributes:
        env_key (str): The key/name of the environment variable to read.
        val_type (str): The expected type of the environment variable's value. Supported types are "string" and "number".
        default (str | int | float | None): An optional default value if the environment variable is not set. If None, the variable is required and an error will be raised if it is not set.
    """

    env_key: str
    val_type: str
    default: str | int | float | None = None


class IngestSettings(BaseModel):
    """
    Tunables of the patch ingest pipeline.

    Attributes:
        max_concurrent (int): Max simultaneous patch fetch/decrypt pipelines.
        task_delay_ms (int): Pause applied after every finished patch pipeline before the next one is admitted.
        max_retries (int): Retry budget for rate-limited patch fetches.
        group_size (int): Size of the contiguous patch groups used for stratified sampling.
        select_per_group (int): Number of patches drawn from each group.
        cutoff_hours (float): Only messages newer than now minus this window are considered.
        excluded_account_id (str | None): Conversation id of the system/bot account that is never ingested.
        embed_batch_size (int): Messages per embedding request.
        embed_batch_concurrency (int): Embedding batches in flight per patch.
        id_mask_salt (str | None): Salt of the uploader's id masking. None falls back to the built-in default.
    """

    max_concurrent: int = 30
    task_delay_ms: int = 10
    max_retries: int = 3
    group_size: int = 100
    select_per_group: int = 30
    cutoff_hours: float = 16
    excluded_account_id: str | None = None
    embed_batch_size: int = 50
    embed_batch_concurrency: int = 4
    id_mask_salt: str | None = None

    @classmethod
    def from_helper_config(cls, helper_config: HelperConfig) -> "IngestSettings":
        """Build the settings from environment variables, falling back to the defaults above.

        Args:
            helper_config (HelperConfig): The configuration helper to read from.

        Returns:
            IngestSettings: The resolved settings.
        """
        defaults = cls()
        excluded = helper_config.get_string_val("INGEST_EXCLUDED_ACCOUNT_ID", default="")
        salt = helper_config.get_string_val("ID_MASK_SALT", default="")
        return cls(
            max_concurrent=helper_config.get_number_val("INGEST_MAX_CONCURRENT", default=defaults.max_concurrent),
            task_delay_ms=helper_config.get_number_val("INGEST_TASK_DELAY_MS", default=defaults.task_delay_ms),
            max_retries=helper_config.get_number_val("INGEST_MAX_RETRIES", default=defaults.max_retries),
            group_size=helper_config.get_number_val("INGEST_GROUP_SIZE", default=defaults.group_size),
            select_per_group=helper_config.get_number_val("INGEST_SELECT_PER_GROUP", default=defaults.select_per_group),
            cutoff_hours=helper_config.get_number_val("INGEST_CUTOFF_HOURS", default=defaults.cutoff_hours),
            excluded_account_id=excluded or None,
            embed_batch_size=helper_config.get_number_val("EMBED_BATCH_SIZE", default=defaults.embed_batch_size),
            embed_batch_concurrency=helper_config.get_number_val("EMBED_BATCH_CONCURRENCY", default=defaults.embed_batch_concurrency),
            id_mask_salt=salt or None,
        )
