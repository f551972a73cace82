try:
    import boto3  # type: ignore
except ImportError:  # Optional; only needed for R2 upload/download
    boto3 = None

from gigscraper import config


def _r2_configured():
    return all([config.R2_ACCOUNT_ID, config.R2_ACCESS_KEY_ID, config.R2_SECRET_ACCESS_KEY])


def _client():
    return boto3.client(
        "s3",
        endpoint_url=f"https://{config.R2_ACCOUNT_ID}.r2.cloudflarestorage.com",
        aws_access_key_id=config.R2_ACCESS_KEY_ID,
        aws_secret_access_key=config.R2_SECRET_ACCESS_KEY,
    )


def synced_files():
    """(local path, object key) for every file kept in R2 between runs."""
    paths = [
        config.COMPLEXITY_CACHE_PATH,
        config.BLACKLIST_PATH,
        config.RATE_LIMIT_PATH,
        config.OCR_PREFERENCES_PATH,
        config.SESSION_LOG_PATH,
        config.SPOTIFY_GENRE_CACHE_PATH,
        config.STATUS_PATH,
        config.DB_PATH,
    ]
    return [(path, f"{config.R2_PREFIX}{path.name}") for path in paths]


def download_from_r2(key, local_path, client=None):
    """
    Download a file from R2 if it exists.
    Returns True if downloaded, False if not found or error.
    """
    if client is None:
        if not boto3 or not _r2_configured():
            return False

    try:
        s3 = client or _client()
        response = s3.get_object(Bucket=config.R2_BUCKET_NAME, Key=key)
        local_path.parent.mkdir(parents=True, exist_ok=True)
        with open(local_path, "wb") as f:
            f.write(response["Body"].read())
        return True
    except Exception:
        return False


def download_caches(log_func=None, client=None):
    """Pull persisted caches before a run. Returns the keys downloaded."""
    log = log_func or print
    if client is None and (not boto3 or not _r2_configured()):
        return []
    downloaded = [key for path, key in synced_files() if download_from_r2(key, path, client=client)]
    if downloaded:
        log(f"Downloaded from R2: {', '.join(downloaded)}")
    return downloaded


def upload_to_r2(log_func=None, client=None):
    """
    Upload caches, status and the event store to Cloudflare R2.
    Returns True if successful, False otherwise.
    log_func: optional logging function (defaults to print)
    """
    log = log_func or print

    if client is None:
        if not boto3:
            log("R2 upload skipped: boto3 not installed")
            return False

        if not _r2_configured():
            log("R2 upload skipped: missing R2 credentials")
            return False

    try:
        s3 = client or _client()
        uploaded = []

        for path, key in synced_files():
            if path.exists():
                with open(path, "rb") as f:
                    s3.put_object(
                        Bucket=config.R2_BUCKET_NAME,
                        Key=key,
                        Body=f.read(),
                        ContentType="application/json",
                    )
                uploaded.append(key)

        log(f"Uploaded to R2: {', '.join(uploaded)}")
        return True
    except Exception as e:
        log(f"R2 upload failed: {e}")
        return False
