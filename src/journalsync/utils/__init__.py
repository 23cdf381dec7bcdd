from journalsync.utils.file_manager import FileManager

__all__ = ['FileManager']
