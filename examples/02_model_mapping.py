"""
Example 02: Lazy Results, Model Mapping and Stored Procedures

This example maps a lazy result sequence to dataclasses and Pydantic models,
then calls a stored procedure with an output parameter.
"""

import os
from dataclasses import dataclass

from pydantic import BaseModel

from resilient_db import (
    CommandType,
    ModelMapper,
    ParameterDirection,
    SqlType,
    StreamInterruptedError,
    get_db_tools,
)


@dataclass
class JobDataclass:
    """Job model using dataclass"""
    job: int
    state_name: str


class JobPydantic(BaseModel):
    """Job model using Pydantic"""
    Job: int
    State_Name: str


def main():
    connection_string = os.environ.get(
        "DB_CONNECTION_STRING",
        "Host=localhost;Database=dms;Username=dmsreader;Password=dms4fun",
    )
    db_tools = get_db_tools(connection_string)

    print("=== Lazy Results with Model Mapping ===\n")

    sql = "SELECT Job, State_Name FROM t_jobs ORDER BY Job"

    # Rows are fetched as the sequence is consumed
    try:
        for job in db_tools.get_query_results_lazy(sql, ModelMapper(JobDataclass), max_rows=3):
            print(f"Dataclass: {job}")
        for job in db_tools.get_query_results_lazy(sql, ModelMapper(JobPydantic), max_rows=3):
            print(f"Pydantic:  {job.model_dump()}")
    except StreamInterruptedError as e:
        print(f"Stream failed after {e.rows_yielded} rows")
    print()

    print("=== Stored Procedure ===\n")

    command = db_tools.create_command("add_update_job_comment", CommandType.STORED_PROCEDURE)
    db_tools.add_parameter(command, "@job", SqlType.INT, value=1)
    db_tools.add_parameter(command, "@comment", SqlType.VARCHAR, 512, "Reviewed")
    db_tools.add_parameter(
        command, "@message", SqlType.VARCHAR, 512, direction=ParameterDirection.OUTPUT
    )
    db_tools.add_parameter(
        command, "@Return", SqlType.INT, direction=ParameterDirection.RETURN_VALUE
    )

    result = db_tools.execute_sp(command, max_retry_count=2, retry_delay_seconds=5)
    message = command.get_parameter("_message") or command.get_parameter("@message")
    print(f"execute_sp: success={result.success}, return_code={result.return_code}")
    print(f"Output message: {message.value if message else ''}")


if __name__ == "__main__":
    main()
