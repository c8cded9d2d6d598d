"""Google Calendar provider adapter"""
from cal_ops.reader import CalendarReader
from cal_ops.writer import CalendarWriter
from cal_ops.http import GoogleApiSession
