"""
Example 01: Basic Query Execution

This example runs text queries with resilient_db's get_db_tools and prints
the ExecutionResult of each call. Set DB_CONNECTION_STRING to a SQL Server
or PostgreSQL connection string before running it.
"""

import os

from resilient_db import SqlType, get_db_tools


def main():
    connection_string = os.environ.get(
        "DB_CONNECTION_STRING",
        "Host=localhost;Database=dms;Username=dmsreader;Password=dms4fun",
    )

    # get_db_tools picks the executor from the connection string
    db_tools = get_db_tools(connection_string)
    db_tools.add_event_handler(lambda event: print(f"[{event.level.value}] {event.message}"))

    print(f"=== Basic Query Execution ({db_tools.server_type.value}) ===\n")

    result = db_tools.test_database_connection()
    if not result.success:
        print(f"Cannot connect: {result.message}")
        return

    # get_query_scalar: first column of the first row
    result = db_tools.get_query_scalar("SELECT count(*) FROM t_jobs")
    print(f"get_query_scalar result: {result.data} jobs\n")

    # get_query_results: rows as strings, null values become ""
    result = db_tools.get_query_results(
        "SELECT Job, State_Name, Comment FROM t_jobs ORDER BY Job DESC", max_rows=5
    )
    print(f"get_query_results columns: {result.data.columns}")
    for row in result.data:
        print(f"  {row}")
    print()

    # Parameters use @name markers on both engines
    command = db_tools.create_command("SELECT Job, State_Name FROM t_jobs WHERE Job = @job")
    db_tools.add_parameter(command, "@job", SqlType.INT, value=1)
    result = db_tools.get_query_results_table(command)
    print(f"get_query_results_table result: {result.data.to_dicts()}")
    print(f"Return code: {result.return_code}\n")

    # A failing query reports a negative return code instead of raising
    result = db_tools.get_query_scalar("SELECT * FROM t_missing_table", retry_count=1)
    print(f"Failure: success={result.success}, return_code={result.return_code}")


if __name__ == "__main__":
    main()
