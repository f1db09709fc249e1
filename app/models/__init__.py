from app.models.push_record import PushRecord
from app.models.exec_record import ExecRecord
from app.models.worker_record import WorkerRecord

__all__ = ["PushRecord", "ExecRecord", "WorkerRecord"]
