"""
Progress tables for a packing session.

Turns the flat command list plus the resolved entry ids into pandas
DataFrames: one row per item, and per-machine / per-location aggregates
for a progress view or an end-of-session report.
"""

from typing import Iterable, Sequence

import pandas as pd
from openpyxl.styles import PatternFill

from audio_commands import AudioCommand, IdentityRole, identity_key, machine_designator
from logger import get_logger

logger = get_logger(__name__)

ITEM_COLUMNS = [
    'Command_Id', 'Machine_Key', 'Machine', 'Location_Key', 'Location',
    'SKU', 'Quantity', 'Entries', 'Resolved',
]

MACHINE_COLUMNS = [
    'Machine_Key', 'Machine', 'Location', 'Total_Items', 'Resolved_Items',
    'Pending_Items', 'Total_Quantity', 'Packing Progress',
]

LOCATION_COLUMNS = [
    'Location_Key', 'Location', 'Machines', 'Total_Items', 'Resolved_Items',
    'Pending_Items', 'Total_Quantity', 'Packing Progress',
]


def item_rows(commands: Sequence[AudioCommand], resolved_ids: Iterable[str]) -> pd.DataFrame:
    """One row per item command, with its grouping keys and resolved flag."""
    resolved = set(resolved_ids)
    rows = []
    for command in commands:
        if not command.is_item:
            continue
        rows.append({
            'Command_Id': command.id,
            'Machine_Key': identity_key(command, IdentityRole.MACHINE),
            'Machine': machine_designator(command),
            'Location_Key': identity_key(command, IdentityRole.LOCATION),
            'Location': (command.location_name or '').strip(),
            'SKU': command.sku_code or command.sku_name or '',
            'Quantity': command.quantity,
            'Entries': len(command.pick_entry_ids),
            'Resolved': all(entry_id in resolved for entry_id in command.pick_entry_ids),
        })
    return pd.DataFrame(rows, columns=ITEM_COLUMNS)


def _summarize(df: pd.DataFrame, key: str, agg_dict: dict, columns: list) -> pd.DataFrame:
    if df.empty:
        return pd.DataFrame(columns=columns)

    summary = df.groupby(key, sort=False).agg(agg_dict).reset_index()
    summary.rename(columns={
        'Command_Id': 'Total_Items',
        'Resolved': 'Resolved_Items',
        'Quantity': 'Total_Quantity',
    }, inplace=True)
    if key != 'Machine_Key':
        summary.rename(columns={'Machine_Key': 'Machines'}, inplace=True)
    summary['Resolved_Items'] = summary['Resolved_Items'].astype(int)
    summary['Pending_Items'] = summary['Total_Items'] - summary['Resolved_Items']
    summary['Packing Progress'] = (
        summary['Resolved_Items'].astype(str) + " / " + summary['Total_Items'].astype(str)
    )
    return summary[columns]


def machine_progress(commands: Sequence[AudioCommand], resolved_ids: Iterable[str]) -> pd.DataFrame:
    """Per-machine totals in first-seen order."""
    df = item_rows(commands, resolved_ids)
    agg_dict = {
        'Machine': 'first',
        'Location': 'first',
        'Command_Id': 'count',
        'Resolved': 'sum',
        'Quantity': 'sum',
    }
    return _summarize(df, 'Machine_Key', agg_dict, MACHINE_COLUMNS)


def location_progress(commands: Sequence[AudioCommand], resolved_ids: Iterable[str]) -> pd.DataFrame:
    """Per-location totals in first-seen order."""
    df = item_rows(commands, resolved_ids)
    agg_dict = {
        'Location': 'first',
        'Machine_Key': 'nunique',
        'Command_Id': 'count',
        'Resolved': 'sum',
        'Quantity': 'sum',
    }
    return _summarize(df, 'Location_Key', agg_dict, LOCATION_COLUMNS)


def export_progress_report(
    commands: Sequence[AudioCommand],
    resolved_ids: Iterable[str],
    output_path: str,
) -> None:
    """
    Write machine and location progress to an Excel workbook.

    Rows whose work is fully resolved are highlighted green.
    """
    resolved = set(resolved_ids)
    sheets = {
        'Machines': machine_progress(commands, resolved),
        'Locations': location_progress(commands, resolved),
        'Items': item_rows(commands, resolved),
    }

    green_fill = PatternFill(start_color="C6EFCE", end_color="C6EFCE", fill_type="solid")

    with pd.ExcelWriter(output_path, engine='openpyxl') as writer:
        for sheet_name, df in sheets.items():
            df.to_excel(writer, index=False, sheet_name=sheet_name)
            worksheet = writer.sheets[sheet_name]

            if sheet_name == 'Items':
                done = df['Resolved'].tolist()
            else:
                done = (df['Pending_Items'] == 0).tolist()

            for row_idx, row in enumerate(worksheet.iter_rows(min_row=2, max_row=worksheet.max_row)):
                if row_idx < len(done) and done[row_idx]:
                    for cell in row:
                        cell.fill = green_fill

    logger.info(f"Progress report saved to {output_path}")
