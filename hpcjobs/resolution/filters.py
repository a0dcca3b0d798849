from typing import Optional

from hpcjobs.resolution.types import ArchiveFilter


def merge_archive_filters(
    request_filter: ArchiveFilter, app_filter: Optional[ArchiveFilter]
) -> None:
    """Merge an application's archive filter into a job request's archive filter.

    The request filter is updated in place. The application's include and exclude
    patterns are appended to the request's. The request's choice of whether to archive
    launch files takes precedence over the application's, defaulting to ``True`` if
    neither makes a choice.
    """

    request_filter.includes = list(request_filter.includes or [])
    request_filter.excludes = list(request_filter.excludes or [])

    if app_filter is not None:
        request_filter.includes.extend(app_filter.includes or [])
        request_filter.excludes.extend(app_filter.excludes or [])
        if request_filter.include_launch_files is None:
            request_filter.include_launch_files = app_filter.include_launch_files

    if request_filter.include_launch_files is None:
        request_filter.include_launch_files = True
