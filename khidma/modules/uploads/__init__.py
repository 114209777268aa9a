from khidma.modules.uploads.models import FileUpload, FileType, UploadStatus, UploadType

__all__ = ["FileUpload", "FileType", "UploadStatus", "UploadType"]
