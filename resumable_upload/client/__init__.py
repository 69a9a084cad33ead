"""Client module exports"""
from .uploader import ResumableUploader, UploadFailed

__all__ = ["ResumableUploader", "UploadFailed"]
