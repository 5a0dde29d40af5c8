# File: levelpark/application/reports.py
"""
Report rendering and export for LevelPark

Four reports over the lot and the fine ledger:
1. VEHICLE - vehicles currently parked
2. REVENUE - collected revenue and current load per floor
3. OCCUPANCY - occupancy per floor and per spot type
4. FINE - outstanding fines

Each report renders as plain text, CSV or JSON. export() writes the
rendering to <Name>_<yyyyMMdd_HHmmss>.<ext> in a directory.
"""

from typing import List, Optional, Dict, Any
from datetime import datetime
from enum import Enum
from pathlib import Path
import csv
import io
import json
import logging

from ..domain.aggregates import ParkingLot
from ..domain.models import Fine, SpotType, DISPLAY_DATE_FORMAT, format_timestamp
from ..domain.services import FineManager


FILE_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
RULE_WIDTH = 60


class ReportType(Enum):
    """Report kinds, valued by their file name stem"""
    VEHICLE = "Current_Vehicles"
    REVENUE = "Revenue_Report"
    OCCUPANCY = "Occupancy_Report"
    FINE = "Fine_Report"

    @property
    def file_name(self) -> str:
        return self.value

    @classmethod
    def from_name(cls, name: str) -> 'ReportType':
        try:
            return cls[str(name).strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown report type: {name}") from None


class ExportFormat(Enum):
    TXT = ".txt"
    CSV = ".csv"
    JSON = ".json"

    @property
    def extension(self) -> str:
        return self.value

    @classmethod
    def from_name(cls, name: str) -> 'ExportFormat':
        try:
            return cls[str(name).strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown export format: {name}") from None


def _percent(part: int, whole: int) -> float:
    return part * 100.0 / whole if whole > 0 else 0.0


class ReportExporter:
    """Renders lot and fine reports"""

    def __init__(self):
        self._logger = logging.getLogger(self.__class__.__name__)

    # ========================================================================
    # PUBLIC API
    # ========================================================================

    def render(
        self,
        report_type: ReportType,
        fmt: ExportFormat,
        lot: ParkingLot,
        fines: Optional[List[Fine]] = None,
        generated_at: Optional[datetime] = None
    ) -> str:
        """Render one report as a string"""
        generated_at = generated_at or datetime.now()
        fines = list(fines or [])

        if fmt == ExportFormat.TXT:
            return self._render_text(report_type, lot, fines, generated_at)
        if fmt == ExportFormat.CSV:
            return self._render_csv(report_type, lot, fines)
        if fmt == ExportFormat.JSON:
            payload = self.report_data(report_type, lot, fines)
            payload["generated"] = generated_at.strftime(DISPLAY_DATE_FORMAT)
            return json.dumps(payload, indent=2)
        raise ValueError(f"Unsupported export format: {fmt}")

    def export(
        self,
        report_type: ReportType,
        fmt: ExportFormat,
        lot: ParkingLot,
        fines: Optional[List[Fine]] = None,
        directory: str = ".",
        generated_at: Optional[datetime] = None
    ) -> Path:
        """
        Write a report into a directory
        Returns: path of the written file
        """
        generated_at = generated_at or datetime.now()
        content = self.render(report_type, fmt, lot, fines, generated_at)

        output_dir = Path(directory)
        output_dir.mkdir(parents=True, exist_ok=True)
        file_name = f"{report_type.file_name}_{generated_at.strftime(FILE_TIMESTAMP_FORMAT)}{fmt.extension}"
        path = output_dir / file_name
        path.write_text(content, encoding="utf-8")

        self._logger.info(f"Exported {report_type.name} report to {path}")
        return path

    def report_data(
        self,
        report_type: ReportType,
        lot: ParkingLot,
        fines: Optional[List[Fine]] = None
    ) -> Dict[str, Any]:
        """Structured content of a report"""
        if report_type == ReportType.VEHICLE:
            vehicles = [
                {
                    "license_plate": spot.current_vehicle.plate,
                    "vehicle_type": spot.current_vehicle.vehicle_type.value,
                    "spot_id": spot.spot_id,
                    "entry_time": format_timestamp(spot.current_vehicle.entry_time),
                }
                for spot in lot.occupied_spots()
            ]
            return {"report": report_type.name, "total_vehicles": len(vehicles), "vehicles": vehicles}

        if report_type == ReportType.REVENUE:
            return {
                "report": report_type.name,
                "total_revenue": float(lot.total_revenue),
                "total_vehicles_parked": lot.occupied_count,
                "occupancy_rate": round(lot.occupancy_rate, 2),
                "floors": [
                    {"floor": floor.floor_number, "vehicles_parked": floor.occupied_count}
                    for floor in lot.floors
                ],
            }

        if report_type == ReportType.OCCUPANCY:
            status = lot.get_status_report()
            return {
                "report": report_type.name,
                "total_spots": status["total_spots"],
                "available_spots": status["available_spots"],
                "occupied_spots": status["occupied_spots"],
                "occupancy_rate": status["occupancy_rate"],
                "floors": status["floors"],
                "spot_types": status["spot_types"],
            }

        if report_type == ReportType.FINE:
            fines = list(fines or [])
            return {
                "report": report_type.name,
                "count": len(fines),
                "total_amount": float(FineManager.total_of(fines)),
                "fines": [fine.to_dict() for fine in fines],
            }

        raise ValueError(f"Unsupported report type: {report_type}")

    # ========================================================================
    # TEXT
    # ========================================================================

    def _render_text(
        self,
        report_type: ReportType,
        lot: ParkingLot,
        fines: List[Fine],
        generated_at: datetime
    ) -> str:
        titles = {
            ReportType.VEHICLE: "CURRENT VEHICLES REPORT",
            ReportType.REVENUE: "REVENUE REPORT",
            ReportType.OCCUPANCY: "OCCUPANCY REPORT",
            ReportType.FINE: "FINE REPORT",
        }
        lines = [
            "=" * RULE_WIDTH,
            f"{titles[report_type]:^{RULE_WIDTH}}".rstrip(),
            f"Generated: {generated_at.strftime(DISPLAY_DATE_FORMAT)}".center(RULE_WIDTH).rstrip(),
            "=" * RULE_WIDTH,
            "",
        ]

        if report_type == ReportType.VEHICLE:
            lines.extend(self._vehicle_lines(lot))
        elif report_type == ReportType.REVENUE:
            lines.extend(self._revenue_lines(lot))
        elif report_type == ReportType.OCCUPANCY:
            lines.extend(self._occupancy_lines(lot))
        else:
            lines.extend(self._fine_lines(fines))

        lines.append("=" * RULE_WIDTH)
        return "\n".join(lines)

    def _vehicle_lines(self, lot: ParkingLot) -> List[str]:
        lines = []
        spots = lot.occupied_spots()
        for count, spot in enumerate(spots, start=1):
            vehicle = spot.current_vehicle
            lines.append(
                f"{count:<5d} {vehicle.plate:<15} {str(vehicle.vehicle_type):<12} "
                f"{spot.spot_id:<12} {format_timestamp(vehicle.entry_time)}"
            )
        if not spots:
            lines.append("No vehicles currently parked.")
        lines.extend(["", "-" * RULE_WIDTH, f"Total Vehicles: {len(spots)}"])
        return lines

    def _revenue_lines(self, lot: ParkingLot) -> List[str]:
        lines = [
            f"Total Revenue Collected: RM {lot.total_revenue:.2f}",
            "",
            "Vehicles by Floor:",
            "-" * 40,
        ]
        for floor in lot.floors:
            lines.append(f"Floor {floor.floor_number}: {floor.occupied_count} vehicles currently parked")
        lines.append("")
        return lines

    def _occupancy_lines(self, lot: ParkingLot) -> List[str]:
        lines = [
            f"{'Floor':<10} {'Total Spots':<12} {'Available':<12} {'Occupied':<12} Occupancy %",
            "-" * RULE_WIDTH,
        ]
        for floor in lot.floors:
            lines.append(
                f"{floor.floor_number:<10d} {floor.total_spots:<12d} {floor.available_count:<12d} "
                f"{floor.occupied_count:<12d} {_percent(floor.occupied_count, floor.total_spots):.1f}%"
            )
        lines.append("-" * RULE_WIDTH)
        lines.append(
            f"{'TOTAL':<10} {lot.total_spots:<12d} {lot.available_count:<12d} "
            f"{lot.occupied_count:<12d} {lot.occupancy_rate:.1f}%"
        )

        lines.extend(["", "", "Occupancy by Spot Type:", "-" * 40])
        for spot_type in SpotType:
            spots = [spot for spot in lot.all_spots() if spot.spot_type == spot_type]
            occupied = sum(1 for spot in spots if not spot.is_available)
            lines.append(
                f"{str(spot_type):<15}: {occupied}/{len(spots)} ({_percent(occupied, len(spots)):.1f}%)"
            )
        lines.append("")
        return lines

    def _fine_lines(self, fines: List[Fine]) -> List[str]:
        lines = ["Outstanding Fines:", "-" * RULE_WIDTH]
        if not fines:
            lines.append("No outstanding fines.")
            lines.append("")
            return lines

        lines.append(f"{'No.':<5} {'License Plate':<15} {'Fine Type':<22} {'Amount (RM)':<15} Issued Date")
        lines.append("-" * RULE_WIDTH)
        for count, fine in enumerate(fines, start=1):
            lines.append(
                f"{count:<5d} {fine.license_plate:<15} {str(fine.fine_type):<22} "
                f"{fine.amount:<15.2f} {format_timestamp(fine.issued_at)}"
            )
        lines.append("-" * RULE_WIDTH)
        lines.append(f"Total Outstanding: RM {FineManager.total_of(fines):.2f} ({len(fines)} fines)")
        lines.append("")
        return lines

    # ========================================================================
    # CSV
    # ========================================================================

    def _render_csv(self, report_type: ReportType, lot: ParkingLot, fines: List[Fine]) -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")

        if report_type == ReportType.VEHICLE:
            writer.writerow(["No", "License Plate", "Vehicle Type", "Spot ID", "Entry Time"])
            for count, spot in enumerate(lot.occupied_spots(), start=1):
                vehicle = spot.current_vehicle
                writer.writerow([
                    count, vehicle.plate, str(vehicle.vehicle_type),
                    spot.spot_id, format_timestamp(vehicle.entry_time)
                ])

        elif report_type == ReportType.REVENUE:
            writer.writerow(["Metric", "Value"])
            writer.writerow(["Total Revenue (RM)", f"{lot.total_revenue:.2f}"])
            writer.writerow(["Total Vehicles Parked", lot.occupied_count])
            writer.writerow(["Occupancy Rate (%)", f"{lot.occupancy_rate:.1f}"])
            for floor in lot.floors:
                writer.writerow([f"Floor {floor.floor_number} Vehicles", floor.occupied_count])

        elif report_type == ReportType.OCCUPANCY:
            writer.writerow(["Floor", "Total Spots", "Available", "Occupied", "Occupancy %"])
            for floor in lot.floors:
                writer.writerow([
                    floor.floor_number, floor.total_spots, floor.available_count,
                    floor.occupied_count, f"{_percent(floor.occupied_count, floor.total_spots):.1f}"
                ])
            writer.writerow([
                "TOTAL", lot.total_spots, lot.available_count,
                lot.occupied_count, f"{lot.occupancy_rate:.1f}"
            ])

        else:
            writer.writerow(["No", "License Plate", "Fine Type", "Amount (RM)", "Issued Date"])
            for count, fine in enumerate(fines, start=1):
                writer.writerow([
                    count, fine.license_plate, str(fine.fine_type),
                    f"{fine.amount:.2f}", format_timestamp(fine.issued_at)
                ])

        return buffer.getvalue()
