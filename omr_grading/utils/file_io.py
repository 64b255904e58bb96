import json
import pandas as pd
from pathlib import Path
from typing import Dict, Any, List, Optional
from .logger import app_logger

# Export columns that hold identifiers; written and read back as text
ID_COLUMNS = ("Student ID", "Interview ID", "Combined ID", "Registration No", "Room", "Order")

class FileHandler:
    """
    Static class for every file read/write the grading tool performs.
    Keeps error handling and logging for I/O in one place.
    """

    @staticmethod
    def load_json(file_path: Path) -> Dict[str, Any]:
        """
        Load a JSON document.

        Args:
            file_path (Path): File to read.

        Returns:
            Dict: Parsed JSON data.

        Raises:
            FileNotFoundError: The file does not exist.
            ValueError: The file is not valid JSON.
        """
        if not isinstance(file_path, Path):
            file_path = Path(file_path)

        resolved_path = file_path.resolve()

        if not resolved_path.exists():
            app_logger.error(f"File not found: {resolved_path}")
            raise FileNotFoundError(f"File not found: {resolved_path}")

        try:
            with open(resolved_path, 'r', encoding='utf-8-sig') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            app_logger.critical(f"JSON Syntax Error in {resolved_path}: {e}")
            raise ValueError(f"Invalid JSON in {resolved_path.name}: {e}") from e
        except OSError as e:
            app_logger.error(f"Unexpected error loading {resolved_path}: {e}")
            raise

        app_logger.debug(f"Loaded JSON successfully: {resolved_path.name}")
        return data

    @staticmethod
    def save_json(data: Dict[str, Any], file_path: Path) -> Path:
        """Write a JSON document (UTF-8, indented, non-ASCII kept readable)."""
        if not isinstance(file_path, Path):
            file_path = Path(file_path)

        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(file_path, 'w', encoding='utf-8') as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
        except OSError as e:
            app_logger.error(f"Failed to save JSON {file_path}: {e}")
            raise

        app_logger.debug(f"Saved JSON: {file_path.name}")
        return file_path

    @staticmethod
    def load_config(filename: Path = Path("config.json")) -> Dict[str, Any]:
        """Wrapper to load the application config file."""
        return FileHandler.load_json(filename)

    @staticmethod
    def load_excel_rows(file_path: Path) -> List[List[str]]:
        """
        Read the first sheet of a workbook as rows of trimmed strings.
        The header row is dropped; empty cells become "".
        """
        if not isinstance(file_path, Path):
            file_path = Path(file_path)

        if not file_path.exists():
            app_logger.error(f"Workbook not found: {file_path}")
            raise FileNotFoundError(f"Workbook not found: {file_path}")

        df = pd.read_excel(file_path, sheet_name=0, header=0, dtype=str)
        df = df.fillna("")

        rows = [[str(cell).strip() for cell in row] for row in df.itertuples(index=False, name=None)]
        app_logger.debug(f"Read {len(rows)} rows from {file_path.name}")
        return rows

    @staticmethod
    def _export_frame(rows: List[Dict[str, Any]]) -> pd.DataFrame:
        """Rows -> DataFrame with identifier columns kept as text ("0101" stays "0101")."""
        df = pd.DataFrame(rows)
        for column in ID_COLUMNS:
            if column in df.columns:
                df[column] = df[column].fillna("").astype(str)
        return df

    @staticmethod
    def _export_path(result_dir: Path, file_name_prefix: str, suffix: str) -> Path:
        result_dir = Path(result_dir)
        result_dir.mkdir(parents=True, exist_ok=True)
        prefix = file_name_prefix or result_dir.name
        return result_dir / f"{prefix}_summary{suffix}"

    @staticmethod
    def save_results_to_excel(rows: List[Dict[str, Any]], result_dir: Path, file_name_prefix: str = "") -> Optional[Path]:
        """
        Export grade or sheet rows to `<prefix>_summary.xlsx`.

        Re-exporting the same round appends below the earlier rows; a workbook
        that cannot be read back is replaced.
        """
        if not rows:
            app_logger.warning(f"Nothing to export for '{file_name_prefix}'.")
            return None

        excel_path = FileHandler._export_path(result_dir, file_name_prefix, ".xlsx")
        df_new = FileHandler._export_frame(rows)

        if excel_path.exists():
            try:
                id_dtypes = {column: str for column in ID_COLUMNS}
                df_old = pd.read_excel(excel_path, dtype=id_dtypes).fillna({c: "" for c in ID_COLUMNS})
                df_new = pd.concat([df_old, df_new], ignore_index=True)
                app_logger.info(f"Appending {len(rows)} rows to {excel_path.name}")
            except (ValueError, OSError) as e:
                app_logger.warning(f"Could not read {excel_path.name} ({e}); replacing it.")

        try:
            df_new.to_excel(excel_path, index=False)
        except OSError as e:
            app_logger.error(f"Failed to write {excel_path}: {e}")
            raise

        app_logger.info(f"Exported {len(rows)} rows to {excel_path}")
        return excel_path

    @staticmethod
    def save_results_to_csv(rows: List[Dict[str, Any]], result_dir: Path, file_name_prefix: str = "") -> Optional[Path]:
        """Export rows to `<prefix>_summary.csv`, appending without repeating the header."""
        if not rows:
            app_logger.warning(f"Nothing to export for '{file_name_prefix}'.")
            return None

        csv_path = FileHandler._export_path(result_dir, file_name_prefix, ".csv")
        append = csv_path.exists()

        try:
            FileHandler._export_frame(rows).to_csv(
                csv_path,
                mode='a' if append else 'w',
                index=False,
                header=not append,
                encoding='utf-8-sig',
            )
        except OSError as e:
            app_logger.error(f"Failed to write {csv_path}: {e}")
            raise

        app_logger.info(f"Exported {len(rows)} rows to {csv_path.name}")
        return csv_path
