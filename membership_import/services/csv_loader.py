import os
import uuid
from typing import List
import pandas as pd

from membership_import.core.config import settings

def save_uploaded_file(upload_file) -> str:
    """
    Streams an uploaded CSV to disk in 1 MB chunks, rejecting it once it
    grows past settings.MAX_UPLOAD_SIZE_MB.
    Returns a generated file_id used by read_rows and delete_file.
    """
    file_id = str(uuid.uuid4())
    dest_path = os.path.join(settings.UPLOAD_DIR, file_id + ".csv")

    size = 0
    with open(dest_path, "wb") as out_file:
        for chunk in iter(lambda: upload_file.file.read(1024 * 1024), b""):
            size += len(chunk)
            if size > settings.MAX_UPLOAD_SIZE_MB * 1024 * 1024:
                out_file.close()
                os.remove(dest_path)
                raise ValueError(f"File too large. Max size is {settings.MAX_UPLOAD_SIZE_MB} MB.")
            out_file.write(chunk)

    return file_id

def get_file_path(file_id: str) -> str:
    path = os.path.join(settings.UPLOAD_DIR, file_id + ".csv")
    if not os.path.exists(path):
        raise FileNotFoundError(f"No file found for id {file_id}")
    return path

def delete_file(file_id: str) -> None:
    """Removes an upload once its rows have been read. Missing files are ignored."""
    path = os.path.join(settings.UPLOAD_DIR, file_id + ".csv")
    if os.path.exists(path):
        os.remove(path)

def read_rows(
    file_id: str,
    has_header: bool,
    delimiter: str = ",",
    encoding: str = "utf-8",
) -> List[List[str]]:
    """
    Reads an uploaded CSV into positional rows of strings, ready for the
    column mapping. Short rows are padded with empty strings by pandas.
    """
    file_path = get_file_path(file_id)

    try:
        # Reading everything as 'string' (dtype=str) so pandas never guesses types
        df = pd.read_csv(
            file_path,
            sep=delimiter,
            header=0 if has_header else None,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
            encoding=encoding,
            encoding_errors="replace",
        )
    except pd.errors.EmptyDataError:
        return []
    except (pd.errors.ParserError, UnicodeDecodeError) as e:
        raise ValueError(f"Could not read CSV file: {e}")

    return df.fillna("").values.tolist()
