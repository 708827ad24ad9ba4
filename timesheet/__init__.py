"""Sprint timesheet for Jira: worklog aggregation and reconciliation."""
