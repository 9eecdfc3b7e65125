"""s3authgate: AWS Signature Version 4 request authentication gate."""
