"""
Storage transfer configuration.
Constants for multipart upload and chunk staging.
"""

# S3 multipart settings (richer channel)
MULTIPART_THRESHOLD = 64 * 1024 * 1024   # 64MB
MULTIPART_CHUNKSIZE = 64 * 1024 * 1024   # 64MB per part (10,000 parts cover 625GB)
MAX_CONCURRENCY = 1                      # Serial part uploads (predictable memory usage)

# Local copy buffer for staging files and chunk temporaries
COPY_BUFFER_SIZE = 1024 * 1024           # 1MB
