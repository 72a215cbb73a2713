#!/usr/bin/env python3
"""
MongoDB Index Creation Script
Creates the unique `id` indexes every collection relies on, plus the foreign-key
and sort indexes the query API and hooks hit most often.
"""

import logging

from pymongo import MongoClient

from mongo.constants import DATABASE_NAME, MONGODB_CONNECTION_STRING
from mongo.documents import TABLES

# Configure logging
logger = logging.getLogger(__name__)

TELEGRAM_LOG_TTL_SECONDS = 30 * 24 * 60 * 60


def create_index_if_not_exists(collection, index_spec, index_name, **options):
    """Create index only if it doesn't already exist"""
    try:
        index_names = [idx["name"] for idx in collection.list_indexes()]
        if index_name not in index_names:
            collection.create_index(index_spec, name=index_name, **options)
        return True
    except Exception as e:
        logger.error(f"Error creating index '{index_name}': {e}")
        return False


def create_indexes(db) -> int:
    """Create all indexes on `db`; returns how many index definitions failed."""
    results = []

    # 1. Application ids are unique per collection
    for table in TABLES:
        results.append(create_index_if_not_exists(db[table], [("id", 1)], f"{table}_id_unique", unique=True))

    # 2. Tasks / subtasks (hook lookups)
    results.append(create_index_if_not_exists(db.subtasks, [("task_id", 1)], "subtasks_task_id"))
    results.append(create_index_if_not_exists(db.tasks, [("project_id", 1)], "tasks_project_id"))
    results.append(create_index_if_not_exists(db.tasks, [("status", 1)], "tasks_status"))

    # 3. Work assignments: one row per user/day/item
    results.append(create_index_if_not_exists(
        db.task_work_assignments,
        [("user_id", 1), ("date", 1), ("task_id", 1), ("task_type", 1)],
        "twa_user_date_task_unique",
        unique=True,
    ))
    results.append(create_index_if_not_exists(db.task_work_assignments, [("user_id", 1), ("date", 1)], "twa_user_date"))
    results.append(create_index_if_not_exists(db.task_work_assignments, [("task_id", 1)], "twa_task_id"))
    results.append(create_index_if_not_exists(db.task_work_assignments, [("project_id", 1)], "twa_project_id"))
    results.append(create_index_if_not_exists(db.task_work_assignments, [("status", 1)], "twa_status"))
    results.append(create_index_if_not_exists(db.work_sessions, [("assignment_id", 1)], "work_sessions_assignment_id"))

    # 4. Areas
    results.append(create_index_if_not_exists(
        db.area_user_assignments, [("user_id", 1), ("area_id", 1)], "aua_user_area_unique", unique=True
    ))
    results.append(create_index_if_not_exists(db.area_user_assignments, [("area_id", 1)], "aua_area_id"))

    # 5. History / settings
    results.append(create_index_if_not_exists(db.status_history, [("task_id", 1)], "status_history_task_id"))
    results.append(create_index_if_not_exists(db.status_history, [("subtask_id", 1)], "status_history_subtask_id"))
    results.append(create_index_if_not_exists(db.app_settings, [("key", 1)], "app_settings_key_unique", unique=True))
    results.append(create_index_if_not_exists(db.projects, [("created_by", 1)], "projects_created_by"))

    # 6. Telegram delivery log, expires after 30 days
    log = db.telegram_notification_log
    results.append(create_index_if_not_exists(
        log, [("createdAt", 1)], "telegram_log_ttl", expireAfterSeconds=TELEGRAM_LOG_TTL_SECONDS
    ))
    results.append(create_index_if_not_exists(log, [("type", 1), ("createdAt", -1)], "telegram_log_type_created"))
    results.append(create_index_if_not_exists(log, [("status", 1), ("createdAt", -1)], "telegram_log_status_created"))

    # 7. Bookkeeping
    results.append(create_index_if_not_exists(db.acct_transactions, [("date", -1)], "acct_transactions_date_desc"))
    for field in ("entity_id", "category_id", "payment_account_id"):
        results.append(create_index_if_not_exists(db.acct_transactions, [(field, 1)], f"acct_transactions_{field}"))
    results.append(create_index_if_not_exists(
        db.acct_journal_entry_lines, [("journal_entry_id", 1)], "acct_lines_journal_entry_id"
    ))
    results.append(create_index_if_not_exists(db.acct_journal_entry_lines, [("account_id", 1)], "acct_lines_account_id"))
    results.append(create_index_if_not_exists(
        db.acct_chart_accounts, [("code", 1)], "acct_chart_accounts_code_unique", unique=True
    ))

    failed = results.count(False)
    if failed:
        logger.warning(f"{failed} index definitions could not be created")
    else:
        logger.info(f"Ensured {len(results)} indexes on '{db.name}'")
    return failed


def main():
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    client = MongoClient(MONGODB_CONNECTION_STRING)
    try:
        create_indexes(client[DATABASE_NAME])
    finally:
        client.close()


if __name__ == "__main__":
    main()
