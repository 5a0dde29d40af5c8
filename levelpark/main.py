# File: levelpark/main.py
"""
Main application entry point for LevelPark

Wires the components together:
1. Logging (file + console)
2. Best-effort persistence (SQLAlchemy) unless running memory-only
3. Parking lot (loaded from the database or built with the default shape)
4. Fine ledger primed with persisted unpaid fines
5. Event publisher (in-process bus, optional Redis channel)
6. ParkingService and the command handler
"""

from typing import Optional, List
import argparse
import json
import logging
import os
import sys

from .config import AppConfig, ConfigurationError
from .domain.aggregates import AggregateFactory
from .domain.strategies import FinePolicy
from .application.parking_service import ParkingService
from .application.commands import ParkingCommandHandler
from .application.reports import ReportExporter, ReportType, ExportFormat
from .infrastructure.persistence import PersistenceAdapter
from .infrastructure.repositories import InMemoryFineRepository
from .infrastructure.messaging import MessageBrokerFactory


def setup_logging(config: AppConfig) -> logging.Logger:
    """Setup application logging configuration"""
    log_dir = config.log_dir
    if not os.path.exists(log_dir):
        os.makedirs(log_dir)

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(os.path.join(log_dir, 'levelpark.log')),
            logging.StreamHandler(sys.stdout)
        ]
    )
    return logging.getLogger(__name__)


class ParkingApplication:
    """Main application controller that sets up all components"""

    def __init__(self, config: Optional[AppConfig] = None):
        self.config = config or AppConfig.from_env()
        self.logger = logging.getLogger(self.__class__.__name__)
        self.logger.info("Starting LevelPark...")

        self.setup_components()

    def setup_components(self):
        """Initialize all application components with dependency injection"""
        # 1. Persistence
        self.persistence = PersistenceAdapter(
            None if self.config.memory_only else self.config.database_url
        )
        if self.config.memory_only:
            self.logger.info("Memory-only mode, persistence disabled")
        else:
            self.persistence.initialize()

        # 2. Parking lot
        lot = self.persistence.load_lot()
        if lot is None:
            lot = AggregateFactory.create_default_parking_lot(self.config.lot_name)
            self.persistence.save_lot(lot)
            self.logger.info(f"Created default parking lot {lot.name} with {lot.total_spots} spots")
        else:
            self.logger.info(f"Loaded parking lot {lot.name} ({lot.occupied_count} vehicles parked)")

        # 3. Fine ledger
        fine_repository = InMemoryFineRepository()
        for fine in self.persistence.find_unpaid_fines():
            fine_repository.add(fine)

        # 4. Events
        self.event_publisher = MessageBrokerFactory.create_event_publisher(
            self.config.redis_url, self.config.events_channel
        )

        # 5. Service
        self.service = ParkingService(
            lot,
            fine_repository=fine_repository,
            persistence=self.persistence,
            event_publisher=self.event_publisher
        )
        self.service.config.update(self.config.service_config())

        configured = FinePolicy.from_name(self.config.fine_policy)
        if self.service.fine_policy.policy_type != configured.policy_type:
            self.service.change_fine_policy(configured)

        self.command_handler = ParkingCommandHandler(self.service)
        self.logger.info("Application components initialized")

    def status(self) -> dict:
        return self.service.get_parking_lot_status()

    def export_report(self, report_type: ReportType, fmt: ExportFormat, directory: str):
        return ReportExporter().export(
            report_type,
            fmt,
            self.service.parking_lot,
            self.service.all_unpaid_fines(),
            directory=directory,
            generated_at=self.service.clock()
        )

    def shutdown(self):
        self.event_publisher.close()
        self.logger.info("Application shutting down...")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="levelpark", description="LevelPark parking rule engine")
    parser.add_argument("--config", help="YAML configuration file (environment is used otherwise)")
    parser.add_argument("--memory-only", action="store_true", help="Run without a database")

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("status", help="Print the lot status as JSON")

    report = subparsers.add_parser("report", help="Export a report")
    report.add_argument("type", choices=[t.name.lower() for t in ReportType])
    report.add_argument("--format", default="txt", choices=[f.name.lower() for f in ExportFormat])
    report.add_argument("--output", default=".", help="Output directory")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the application"""
    args = build_parser().parse_args(argv)

    try:
        config = AppConfig.from_file(args.config) if args.config else AppConfig.from_env()
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1
    if args.memory_only:
        config.memory_only = True

    setup_logging(config)
    app = ParkingApplication(config)
    try:
        if args.command == "status":
            print(json.dumps(app.status(), indent=2))
        else:
            path = app.export_report(
                ReportType.from_name(args.type),
                ExportFormat.from_name(args.format),
                args.output
            )
            print(f"Report written to {path}")
    except OSError as e:
        logging.getLogger(__name__).error(f"Fatal error in main: {e}")
        return 1
    finally:
        app.shutdown()
    return 0


if __name__ == "__main__":
    sys.exit(main())
