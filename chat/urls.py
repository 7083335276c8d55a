from django.urls import path
from . import views

app_name = "chat"
urlpatterns = [
    # groups
    path("groups/", views.create_group, name="group_create"),
    path("groups/<int:group_id>/", views.group_detail, name="group_detail"),
    path("groups/<int:group_id>/join/", views.join_group, name="group_join"),
    path("groups/<int:group_id>/leave/", views.leave_group, name="group_leave"),
    path("groups/<int:group_id>/members/", views.group_members, name="group_members"),
    path("groups/<int:group_id>/members/<int:user_id>/", views.remove_member, name="group_member_remove"),
    path("groups/<int:group_id>/members/<int:user_id>/role/", views.member_role, name="group_member_role"),

    # messages
    path("messages/groups/<int:group_id>/", views.group_messages, name="group_messages"),
    path("messages/groups/<int:group_id>/read-all/", views.mark_all_read, name="mark_all_read"),
    path("messages/groups/<int:group_id>/unread/", views.unread_count, name="unread_count"),
    path("messages/groups/<int:group_id>/search/", views.search_messages, name="search_messages"),
    path("messages/<int:message_id>/", views.message_detail, name="message_detail"),
    path("messages/<int:message_id>/read/", views.mark_read, name="mark_read"),
    path("messages/<int:message_id>/restore/", views.restore_message, name="restore_message"),
]
